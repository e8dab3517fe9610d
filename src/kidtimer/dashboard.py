"""Read-only dashboard composition for a signed-in parent."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

from .models import Activity, ActivityLog, Child, Timer, UNKNOWN_CHILD_LABEL, format_time

if TYPE_CHECKING:  # pragma: no cover
    from .engine import TimerEngine
    from .webapp.persistence import DocumentGateway

DASHBOARD_ACTIVITY_PREVIEW = 3


@dataclass(slots=True)
class TimerCard:
    """One in-flight timer as shown on the dashboard."""

    timer_id: str
    child_name: str
    remaining: str
    status: str


@dataclass(slots=True)
class LogLine:
    child_name: str
    activity_name: str
    timestamp: str
    notes: Optional[str] = None


@dataclass(slots=True)
class DashboardView:
    children: List[Child] = field(default_factory=list)
    activities: List[Activity] = field(default_factory=list)
    activity_total: int = 0
    timers: List[TimerCard] = field(default_factory=list)
    recent_logs: List[LogLine] = field(default_factory=list)


def child_label(children: Dict[str, Child], child_id: str) -> str:
    child = children.get(child_id)
    return child.name if child else UNKNOWN_CHILD_LABEL


def build_dashboard(
    gateway: "DocumentGateway",
    parent_id: str,
    *,
    engine: Optional["TimerEngine"] = None,
    log_limit: int = 5,
) -> DashboardView:
    """Load children, activities, timers and logs and cross-reference them.

    With an ``engine`` the live local countdown is shown; otherwise the stored
    ``remaining_time`` is used.
    """

    children = gateway.get_children(parent_id)
    activities = gateway.get_activities(parent_id)
    by_child = {child.id: child for child in children}
    timers: List[Timer]
    if engine is not None:
        timers = engine.in_flight()
    else:
        timers = [timer for timer in gateway.get_timers(parent_id) if timer.in_flight]
    cards = [
        TimerCard(
            timer_id=timer.id,
            child_name=child_label(by_child, timer.child_id),
            remaining=format_time(timer.remaining_time),
            status=timer.status.value,
        )
        for timer in timers
    ]
    by_activity = {activity.id: activity for activity in activities}
    logs: List[ActivityLog] = gateway.get_activity_logs(parent_id)[:log_limit]
    lines = [
        LogLine(
            child_name=child_label(by_child, entry.child_id),
            activity_name=by_activity[entry.activity_id].name if entry.activity_id in by_activity else "Unknown Activity",
            timestamp=entry.timestamp.strftime("%Y-%m-%d %H:%M"),
            notes=entry.notes,
        )
        for entry in logs
    ]
    return DashboardView(
        children=children,
        activities=activities[:DASHBOARD_ACTIVITY_PREVIEW],
        activity_total=len(activities),
        timers=cards,
        recent_logs=lines,
    )


__all__ = ["DashboardView", "LogLine", "TimerCard", "build_dashboard", "child_label"]
