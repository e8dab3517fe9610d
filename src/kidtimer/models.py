"""Domain models used by the KidTimer package."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

CURATED_OWNER = "curated"
ACTIVITY_CATEGORIES: tuple[str, ...] = (
    "Movement",
    "Crafts",
    "Learning",
    "Family Games",
    "Chores",
    "Reading",
    "Outdoor",
)
DEFAULT_ACTIVITY_CATEGORY = "Movement"
DEFAULT_TIMER_MINUTES = 15
UNKNOWN_CHILD_LABEL = "Unknown Child"


class TimerStatus(str, Enum):
    """Lifecycle states of a countdown timer."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def format_time(seconds: int) -> str:
    """Render a second count as ``MM:SS``."""

    seconds = max(0, int(seconds))
    minutes, remainder = divmod(seconds, 60)
    return f"{minutes:02d}:{remainder:02d}"


@dataclass(slots=True)
class UserProfile:
    """Profile document kept for every signed-in parent."""

    uid: str
    display_name: str
    email: Optional[str] = None
    photo_url: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(slots=True)
class Child:
    """A child profile owned by a parent."""

    id: str
    parent_id: str
    name: str
    age: Optional[int] = None
    avatar: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(slots=True)
class Activity:
    """Catalog entry authored by a parent or shared by the curated owner."""

    id: str
    parent_id: str
    name: str
    category: str
    description: Optional[str] = None
    min_age: Optional[int] = None
    max_age: Optional[int] = None
    duration: Optional[int] = None
    is_custom: bool = True
    image_url: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_curated(self) -> bool:
        return self.parent_id == CURATED_OWNER


@dataclass(slots=True)
class Timer:
    """Per-child countdown.

    ``initial_duration`` is expressed in minutes while ``remaining_time`` counts
    seconds, so ``0 <= remaining_time <= initial_duration * 60`` always holds.
    """

    id: str
    parent_id: str
    child_id: str
    initial_duration: int
    remaining_time: int
    status: TimerStatus = TimerStatus.ACTIVE
    start_time: datetime = field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None
    activity_suggestion_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self) -> None:
        if not isinstance(self.status, TimerStatus):
            self.status = TimerStatus(self.status)

    @property
    def in_flight(self) -> bool:
        return self.status in (TimerStatus.ACTIVE, TimerStatus.PAUSED)

    def formatted_remaining(self) -> str:
        return format_time(self.remaining_time)


@dataclass(slots=True)
class ActivityLog:
    """Record of an activity a child performed, optionally after a timer."""

    id: str
    parent_id: str
    child_id: str
    activity_id: str
    timer_id: Optional[str] = None
    notes: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)
