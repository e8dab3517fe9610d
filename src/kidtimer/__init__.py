"""KidTimer package: countdown timers, children and activities for parents."""

from .api import ApiExporter, ExpiryDispatcher
from .dashboard import DashboardView, TimerCard, build_dashboard
from .engine import EngineRegistry, TimerEngine
from .exceptions import (
    ActivityNotFoundError,
    AuthenticationError,
    ChildNotFoundError,
    CreationError,
    KidTimerError,
    NotFoundError,
    PersistenceError,
    TimerNotFoundError,
    ValidationError,
)
from .models import (
    ACTIVITY_CATEGORIES,
    CURATED_OWNER,
    Activity,
    ActivityLog,
    Child,
    Timer,
    TimerStatus,
    UserProfile,
    format_time,
)
from .ops import StructuredLogger
from .roster import ActivityCatalog, ActivityJournal, ChildRoster
from .security import AuthManager, AuthState, SignedInUser

__all__ = [
    "ACTIVITY_CATEGORIES",
    "CURATED_OWNER",
    "Activity",
    "ActivityCatalog",
    "ActivityJournal",
    "ActivityLog",
    "ActivityNotFoundError",
    "ApiExporter",
    "AuthManager",
    "AuthState",
    "AuthenticationError",
    "Child",
    "ChildNotFoundError",
    "ChildRoster",
    "CreationError",
    "DashboardView",
    "EngineRegistry",
    "ExpiryDispatcher",
    "KidTimerError",
    "NotFoundError",
    "PersistenceError",
    "SignedInUser",
    "StructuredLogger",
    "Timer",
    "TimerCard",
    "TimerEngine",
    "TimerNotFoundError",
    "TimerStatus",
    "UserProfile",
    "ValidationError",
    "build_dashboard",
    "format_time",
]
