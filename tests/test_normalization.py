from __future__ import annotations

from datetime import UTC, datetime

from rankmatch.ingestion.normalize import (
    as_mapping,
    json_clone,
    normalize_iso_timestamp,
    normalize_timestamp_ms,
    safe_bool,
    safe_float,
    safe_int,
)
from rankmatch.models.roster import RosterSlot


def test_safe_numbers_reject_garbage() -> None:
    assert safe_float("1.5") == 1.5
    assert safe_float("") is None
    assert safe_float(True) is None
    assert safe_float(float("nan")) is None
    assert safe_int("7.9") == 7
    assert safe_int("abc") is None


def test_safe_bool_tokens() -> None:
    assert safe_bool("yes") is True
    assert safe_bool(" On ") is True
    assert safe_bool("0") is False
    assert safe_bool(None) is False


def test_timestamp_normalization() -> None:
    assert normalize_timestamp_ms(1_700_000_000_000) == 1_700_000_000_000
    assert normalize_timestamp_ms("1700000000000") == 1_700_000_000_000
    assert normalize_timestamp_ms("2026-01-01T00:00:00Z") == int(datetime(2026, 1, 1, tzinfo=UTC).timestamp() * 1000)
    assert normalize_timestamp_ms(0) is None
    assert normalize_timestamp_ms("not a date") is None


def test_iso_timestamp_keeps_strings_and_converts_epochs() -> None:
    assert normalize_iso_timestamp(" 2026-01-01T00:00:00Z ") == "2026-01-01T00:00:00Z"
    assert normalize_iso_timestamp(1_767_225_600_000) == "2026-01-01T00:00:00+00:00"
    assert normalize_iso_timestamp("") is None


def test_json_clone_drops_callables_and_dumps_models() -> None:
    cloned = json_clone({"fn": lambda: None, "items": (1, 2), "slot": RosterSlot(slot_index=2)})

    assert "fn" not in cloned
    assert cloned["items"] == [1, 2]
    assert cloned["slot"]["slot_index"] == 2


def test_as_mapping_only_accepts_mappings() -> None:
    source = {"a": {"b": 1}}
    cloned = as_mapping(source)

    assert cloned == source
    assert cloned is not source
    assert as_mapping(["a"]) is None
