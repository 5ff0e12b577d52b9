"""Caller-scoped key/value storage.

Stores string values by key, the way browser local storage does, so the
artifact store and session bookkeeping don't care where bytes end up.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class StoragePort(Protocol):
    """Durable key/value storage for string values."""

    def get(self, key: str) -> str | None:
        """Return the value for key, or None if absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        ...

    def remove(self, key: str) -> bool:
        """Remove key. Returns True if it existed."""
        ...

    def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with prefix."""
        ...


class InMemoryStorage:
    """Process-local storage. Used in tests and single-process demos."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self, prefix: str = "") -> list[str]:
        return [key for key in self._data if key.startswith(prefix)]


class JsonFileStorage:
    """Storage backed by a single JSON document on disk.

    Every write replaces the file atomically (temp file + rename) so a
    crash mid-write never leaves a half-written document behind.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: dict[str, str] = self._read()

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush()

    def remove(self, key: str) -> bool:
        existed = self._data.pop(key, None) is not None
        if existed:
            self._flush()
        return existed

    def keys(self, prefix: str = "") -> list[str]:
        return [key for key in self._data if key.startswith(prefix)]

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, RecursionError) as e:
            raise ValueError(f"Storage file {self.path} is not valid JSON: {e}") from e

        if not isinstance(data, dict) or not all(
            isinstance(value, str) for value in data.values()
        ):
            raise ValueError(f"Storage file {self.path} is not a string mapping")

        logger.debug(f"Loaded {len(data)} keys from {self.path}")
        return data

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f)
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise
