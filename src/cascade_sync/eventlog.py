"""Structured event stream for cascade runs.

Events are kept in memory as plain dicts and echoed to stdout when the
verbosity level admits them. Verbosity follows the ``CASCADE_VERBOSITY``
environment variable: 0=quiet, 1=normal, 2=verbose (debug events).
"""

from __future__ import annotations

import os
import threading
from typing import Any, Dict, List, Optional

QUIET = 0
NORMAL = 1
DEBUG = 2


def _get_verbosity() -> int:
    """Get verbosity level from environment: 0=quiet, 1=normal, 2=verbose."""
    return int(os.environ.get("CASCADE_VERBOSITY", "1"))


def _format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.6g}"
    return str(value)


class EventLog:
    """Append-only list of ``{"event": name, **fields}`` records."""

    def __init__(self, verbosity: Optional[int] = None, echo: bool = True) -> None:
        self.verbosity = _get_verbosity() if verbosity is None else verbosity
        self.echo = echo
        self._events: List[Dict[str, Any]] = []
        # Worker threads and the event loop may both emit.
        self._lock = threading.Lock()

    def emit(self, event: str, level: int = NORMAL, **fields: Any) -> Dict[str, Any]:
        record = {"event": event, **fields}
        with self._lock:
            self._events.append(record)
        if self.echo and level <= self.verbosity:
            details = " ".join(f"{key}={_format_value(value)}" for key, value in fields.items())
            print(f"[{event}] {details}".rstrip(), flush=True)
        return record

    def debug(self, event: str, **fields: Any) -> Dict[str, Any]:
        return self.emit(event, level=DEBUG, **fields)

    @property
    def events(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._events)

    def named(self, event: str) -> List[Dict[str, Any]]:
        """Return every recorded event with the given name, in order."""
        return [record for record in self.events if record["event"] == event]

    def last(self, event: str) -> Optional[Dict[str, Any]]:
        matches = self.named(event)
        return matches[-1] if matches else None
