"""Durable persistence backends for the match store.

One record per game id, keyed ``rank.match.game.<game_id>``.  Records are the
JSON dump of a :class:`~rankmatch.models.match.MatchState`.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Protocol

_logger = logging.getLogger(__name__)

STORAGE_KEY_PREFIX = "rank.match.game."

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]")


def storage_key(game_id: str) -> str:
    return f"{STORAGE_KEY_PREFIX}{game_id}"


class StateStorage(Protocol):
    """Structural key/value persistence interface used by the store.

    Implementations may raise ``OSError`` or ``ValueError``; the store logs
    and swallows them.
    """

    def load(self, key: str) -> dict[str, Any] | None: ...

    def save(self, key: str, record: dict[str, Any]) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage; records are kept as serialized JSON text."""

    def __init__(self) -> None:
        self._records: dict[str, str] = {}

    def load(self, key: str) -> dict[str, Any] | None:
        text = self._records.get(key)
        if text is None:
            return None
        loaded = json.loads(text)
        return loaded if isinstance(loaded, dict) else None

    def save(self, key: str, record: dict[str, Any]) -> None:
        self._records[key] = json.dumps(record, separators=(",", ":"))

    def remove(self, key: str) -> None:
        self._records.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._records)


class JsonFileStorage:
    """One JSON file per record inside *directory*.

    Writes go through a temporary file and ``Path.replace`` so a crash never
    leaves a half-written record behind.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory).expanduser()

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, key: str) -> Path:
        return self._directory / f"{_UNSAFE_FILENAME.sub('_', key)}.json"

    def load(self, key: str) -> dict[str, Any] | None:
        path = self._path(key)
        if not path.exists():
            return None
        loaded = json.loads(path.read_text(encoding="utf-8"))
        return loaded if isinstance(loaded, dict) else None

    def save(self, key: str, record: dict[str, Any]) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(record, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(path)
        _logger.debug("Persisted %s to %s", key, path)

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
