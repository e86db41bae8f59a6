from __future__ import annotations

from rankmatch._redact import redact_for_log


def test_credentials_are_masked_in_any_spelling() -> None:
    payload = {
        "game_id": "game-1",
        "apikey": "anon-key",
        "Authorization": "Bearer abc",
        "session": {"accessToken": "tok", "refresh_token": "ref", "user_id": "user-1"},
        "service-role-key": "srk",
    }

    redacted = redact_for_log(payload)

    assert redacted["game_id"] == "game-1"
    assert redacted["apikey"] == "<redacted>"
    assert redacted["Authorization"] == "<redacted>"
    assert redacted["service-role-key"] == "<redacted>"
    assert redacted["session"] == {"accessToken": "<redacted>", "refresh_token": "<redacted>", "user_id": "user-1"}
    assert payload["apikey"] == "anon-key"


def test_bearer_values_are_masked_under_unknown_keys() -> None:
    assert redact_for_log({"header": "bearer eyJhbGciOi"}) == {"header": "Bearer <redacted>"}


def test_long_strings_are_clipped() -> None:
    redacted = redact_for_log({"content": "x" * 600}, max_string=10)

    assert redacted["content"] == "x" * 10 + "...<truncated 590 chars>"


def test_long_row_lists_keep_head() -> None:
    rows = [{"idx": index} for index in range(5)]

    assert redact_for_log(rows, max_items=2) == [{"idx": 0}, {"idx": 1}, "<3 more>"]


def test_sequences_and_bytes() -> None:
    assert redact_for_log([{"token": "t"}, b"abc", 3, None]) == [{"token": "<redacted>"}, "<bytes:3b>", 3, None]
