"""Serialisation helpers and expiry listeners for KidTimer."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Callable, Dict, Iterable, Mapping, Optional

from .models import Activity, Child, Timer, UNKNOWN_CHILD_LABEL, format_time
from .ops import StructuredLogger


def _iso(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment else None


class ApiExporter:
    """Convert KidTimer records to JSON friendly dictionaries."""

    def timer_snapshot(self, timer: Timer, *, child_name: Optional[str] = None) -> Dict[str, object]:
        return {
            "id": timer.id,
            "parent_id": timer.parent_id,
            "child_id": timer.child_id,
            "child_name": child_name,
            "initial_duration": timer.initial_duration,
            "remaining_time": timer.remaining_time,
            "remaining_display": format_time(timer.remaining_time),
            "status": timer.status.value,
            "start_time": _iso(timer.start_time),
            "end_time": _iso(timer.end_time),
            "activity_suggestion_id": timer.activity_suggestion_id,
            "created_at": _iso(timer.created_at),
            "updated_at": _iso(timer.updated_at),
        }

    def timer_listing(self, timers: Iterable[Timer], children: Mapping[str, Child]) -> list[Dict[str, object]]:
        rows = []
        for timer in timers:
            child = children.get(timer.child_id)
            rows.append(self.timer_snapshot(timer, child_name=child.name if child else UNKNOWN_CHILD_LABEL))
        return rows

    def child_snapshot(self, child: Child) -> Dict[str, object]:
        return {
            "id": child.id,
            "name": child.name,
            "age": child.age,
            "avatar": child.avatar,
            "created_at": _iso(child.created_at),
        }

    def activity_snapshot(self, activity: Activity) -> Dict[str, object]:
        return {
            "id": activity.id,
            "name": activity.name,
            "category": activity.category,
            "description": activity.description,
            "duration": activity.duration,
            "is_custom": activity.is_custom,
            "curated": activity.is_curated,
        }

    def to_json(self, payload: object) -> str:
        return json.dumps(payload, sort_keys=True)


class ExpiryDispatcher:
    """Simple synchronous broadcaster for timers that ran out.

    A listener that raises is logged and skipped; the remaining listeners
    still run and the error never reaches the countdown.
    """

    def __init__(self, logger: StructuredLogger | None = None) -> None:
        self._listeners: list[Callable[[Timer], None]] = []
        self._logger = logger or StructuredLogger(component="expiry")

    def register(self, listener: Callable[[Timer], None]) -> None:
        self._listeners.append(listener)

    def unregister(self, listener: Callable[[Timer], None]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def dispatch(self, timer: Timer) -> None:
        for listener in list(self._listeners):
            try:
                listener(timer)
            except Exception as exc:
                self._logger.error(
                    "expiry_listener_failed",
                    timer=timer.id,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=repr(exc),
                )


__all__ = ["ApiExporter", "ExpiryDispatcher"]
