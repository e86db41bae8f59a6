"""Client configuration for rankmatch."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from rankmatch.exceptions import RankMatchConfigError

#: Bounds the backend applies to ready-check windows.
READY_WINDOW_MIN_SECONDS = 5
READY_WINDOW_MAX_SECONDS = 90


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def clamp_ready_window(seconds: Any, default: int = 15) -> int:
    """Clamp a ready-check window to the range the backend accepts."""
    try:
        value = int(float(seconds))
    except (TypeError, ValueError):
        return default
    return max(READY_WINDOW_MIN_SECONDS, min(READY_WINDOW_MAX_SECONDS, value))


@dataclasses.dataclass(frozen=True)
class RankMatchConfig:
    """Client configuration.

    Parameters
    ----------
    base_url : str
        Root URL of the REST backend (``/rest/v1`` is appended).
    api_key : str
        Public API key sent as ``apikey`` with every backend request.
    api_base_url : str or None
        Root URL of the server-proxied API (``/api/rank/...``).  Defaults
        to ``base_url``.
    interactive : bool
        Prefer server-proxied calls over direct procedure calls, the way
        an interactive front-end would.  Background workers leave this off.
    session_ttl : float
        Seconds after which an untouched cache entry is evicted by the
        sweep.  Defaults to 6 hours.
    sweep_interval : float
        Seconds between cache sweeps.  Defaults to 5 minutes.
    background_sweeps : bool
        Run the periodic sweep task.  Disable for short-lived processes.
    invalidate_debounce : float
        Seconds to coalesce realtime invalidation bursts before a sync.
    history_limit : int
        Maximum number of turns kept per history sync.
    host_role_limit_default : int
        Host-role seat cap used when the room does not define one.
    ready_window_seconds : int
        Ready-check window requested from the backend, clamped to 5..90.
    ready_tick_interval : float
        Seconds between ready-check countdown ticks.
    storage_dir : str or None
        Directory for the JSON-file persistence backend.  ``None`` keeps
        state in memory only.
    request_timeout : float
        Total timeout for a single HTTP request, in seconds.
    """

    base_url: str = "http://localhost:54321"
    api_key: str = ""
    api_base_url: str | None = None
    interactive: bool = False
    session_ttl: float = 6 * 3600
    sweep_interval: float = 5 * 60
    background_sweeps: bool = True
    invalidate_debounce: float = 0.25
    history_limit: int = 80
    host_role_limit_default: int = 3
    ready_window_seconds: int = 15
    ready_tick_interval: float = 0.25
    storage_dir: str | None = None
    request_timeout: float = 15.0

    def __post_init__(self) -> None:
        if not self.base_url:
            raise RankMatchConfigError("base_url must be non-empty")
        if self.history_limit <= 0:
            raise RankMatchConfigError("history_limit must be positive")
        if self.host_role_limit_default <= 0:
            raise RankMatchConfigError("host_role_limit_default must be positive")
        if self.session_ttl < 0 or self.sweep_interval <= 0:
            raise RankMatchConfigError("session_ttl and sweep_interval must be positive")
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        object.__setattr__(self, "ready_window_seconds", clamp_ready_window(self.ready_window_seconds))

    @property
    def resolved_api_base_url(self) -> str:
        return (self.api_base_url or self.base_url).rstrip("/")

    @classmethod
    def from_env(cls, **overrides: Any) -> RankMatchConfig:
        """Create configuration from environment variables.

        Reads ``RANKMATCH_BASE_URL``, ``RANKMATCH_API_KEY`` and the optional
        ``RANKMATCH_*`` variables matching the field names.  Explicit keyword
        arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        RankMatchConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "RANKMATCH_BASE_URL": "base_url",
            "RANKMATCH_API_KEY": "api_key",
            "RANKMATCH_API_BASE_URL": "api_base_url",
            "RANKMATCH_STORAGE_DIR": "storage_dir",
        }
        _ENV_FLOAT_MAP = {
            "RANKMATCH_SESSION_TTL": "session_ttl",
            "RANKMATCH_SWEEP_INTERVAL": "sweep_interval",
            "RANKMATCH_INVALIDATE_DEBOUNCE": "invalidate_debounce",
            "RANKMATCH_READY_TICK_INTERVAL": "ready_tick_interval",
            "RANKMATCH_REQUEST_TIMEOUT": "request_timeout",
        }
        _ENV_INT_MAP = {
            "RANKMATCH_HISTORY_LIMIT": "history_limit",
            "RANKMATCH_HOST_ROLE_LIMIT": "host_role_limit_default",
            "RANKMATCH_READY_WINDOW_SECONDS": "ready_window_seconds",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        try:
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = float(val)
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = int(val)
        except ValueError as exc:
            raise RankMatchConfigError(f"Invalid numeric environment value: {exc}") from exc

        if "interactive" not in overrides:
            config_kwargs["interactive"] = _env_bool(env.get("RANKMATCH_INTERACTIVE"), False)
        if "background_sweeps" not in overrides:
            config_kwargs["background_sweeps"] = _env_bool(env.get("RANKMATCH_BACKGROUND_SWEEPS"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
