"""Best-effort key/value persistence for established bridges."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, Protocol

from .errors import StorageError

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class Store(Protocol):
    def put(self, key: str, value: Any) -> None:
        """Persist ``value`` under ``key``; raise :class:`StorageError` on failure."""


class MemoryStore:
    """Dict-backed store, mostly for tests and dry runs."""

    def __init__(self) -> None:
        self.items: Dict[str, Any] = {}

    def put(self, key: str, value: Any) -> None:
        self.items[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self.items.get(key, default)


class JsonFileStore:
    """Writes one ``<key>.json`` file per key under ``directory``."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise StorageError(
                f"Invalid storage key: {key!r}.\n"
                f"Keys may only contain letters, digits, '.', '_' and '-'."
            )
        return self.directory / f"{key}.json"

    def put(self, key: str, value: Any) -> None:
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(value, indent=2, sort_keys=True))
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc

    def get(self, key: str) -> Any:
        path = self._path(key)
        try:
            return json.loads(path.read_text())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc
