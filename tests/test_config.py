from __future__ import annotations

import pytest

from rankmatch.config import RankMatchConfig, clamp_ready_window
from rankmatch.exceptions import RankMatchConfigError


def test_from_env_reads_strings_and_numbers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RANKMATCH_BASE_URL", "https://backend.example.com/")
    monkeypatch.setenv("RANKMATCH_API_KEY", "anon")
    monkeypatch.setenv("RANKMATCH_HISTORY_LIMIT", "40")
    monkeypatch.setenv("RANKMATCH_INVALIDATE_DEBOUNCE", "0.5")
    monkeypatch.setenv("RANKMATCH_INTERACTIVE", "yes")

    config = RankMatchConfig.from_env()

    assert config.base_url == "https://backend.example.com"
    assert config.api_key == "anon"
    assert config.history_limit == 40
    assert config.invalidate_debounce == 0.5
    assert config.interactive is True
    assert config.background_sweeps is True
    assert config.resolved_api_base_url == "https://backend.example.com"


def test_from_env_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RANKMATCH_HISTORY_LIMIT", "40")
    monkeypatch.setenv("RANKMATCH_INTERACTIVE", "true")

    config = RankMatchConfig.from_env(history_limit=10, interactive=False)

    assert config.history_limit == 10
    assert config.interactive is False


def test_from_env_rejects_invalid_numbers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RANKMATCH_SESSION_TTL", "soon")

    with pytest.raises(RankMatchConfigError):
        RankMatchConfig.from_env()


def test_ready_window_is_clamped() -> None:
    assert RankMatchConfig(ready_window_seconds=1).ready_window_seconds == 5
    assert RankMatchConfig(ready_window_seconds=600).ready_window_seconds == 90
    assert clamp_ready_window("20") == 20
    assert clamp_ready_window(None) == 15


@pytest.mark.parametrize(
    "kwargs",
    [
        {"base_url": ""},
        {"history_limit": 0},
        {"host_role_limit_default": 0},
        {"sweep_interval": 0},
    ],
)
def test_invalid_values_raise(kwargs: dict[str, object]) -> None:
    with pytest.raises(RankMatchConfigError):
        RankMatchConfig(**kwargs)  # type: ignore[arg-type]
