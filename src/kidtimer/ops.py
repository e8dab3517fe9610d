"""Operational utilities for KidTimer."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Optional


class StructuredLogger:
    """Write JSON lines log entries for timer and persistence events.

    Entries are kept in memory (bounded by ``capacity``) so the web layer and
    tests can inspect recent activity; when ``path`` is set every entry is also
    appended to that file.
    """

    def __init__(self, *, path: Path | None = None, component: str = "kidtimer", capacity: int = 500) -> None:
        self.path = path
        self.component = component
        self._capacity = capacity
        self._entries: list[dict] = []

    def log(self, event_type: str, *, level: str = "info", **fields: object) -> dict:
        entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "component": self.component,
            "level": level,
            "event": event_type,
            **fields,
        }
        self._entries.append(entry)
        if len(self._entries) > self._capacity:
            del self._entries[: len(self._entries) - self._capacity]
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def error(self, event_type: str, **fields: object) -> dict:
        return self.log(event_type, level="error", **fields)

    def child(self, component: str) -> "StructuredLogger":
        """Return a logger sharing this sink under a more specific component name."""

        logger = StructuredLogger(path=self.path, component=component, capacity=self._capacity)
        logger._entries = self._entries
        return logger

    def entries(self, event_type: Optional[str] = None) -> tuple[dict, ...]:
        if event_type is None:
            return tuple(self._entries)
        return tuple(entry for entry in self._entries if entry["event"] == event_type)

    def tail(self, limit: int = 50) -> tuple[dict, ...]:
        return tuple(self._entries[-limit:])


__all__ = ["StructuredLogger"]
