"""Persistence and SQLModel definitions for the KidTimer web frontend.

The tables below play the role of a remote document store: every record kind
lives in its own collection keyed by an opaque string id.  ``DocumentGateway``
is the only code that talks to them; it translates documents into the plain
dataclasses from :mod:`kidtimer.models` and turns every SQLAlchemy fault into a
:class:`~kidtimer.exceptions.PersistenceError`.
"""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional
from uuid import uuid4

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, col, create_engine, desc, select

from ..exceptions import (
    ActivityNotFoundError,
    ChildNotFoundError,
    PersistenceError,
    TimerNotFoundError,
)
from ..models import (
    CURATED_OWNER,
    Activity,
    ActivityLog,
    Child,
    Timer,
    TimerStatus,
    UserProfile,
)
from ..ops import StructuredLogger
from .config import LOG_PATH, SQLITE_FILE_NAME


def _new_id() -> str:
    return uuid4().hex


# ---------------------------------------------------------------------------
# Document tables
# ---------------------------------------------------------------------------
# Ensure fresh metadata when re-importing in test contexts.
SQLModel.metadata.clear()


class UserProfileDoc(SQLModel, table=True):
    __tablename__ = "users"

    uid: str = Field(primary_key=True)
    email: Optional[str] = Field(default=None, index=True)
    display_name: str = ""
    photo_url: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ChildDoc(SQLModel, table=True):
    __tablename__ = "children"

    id: str = Field(default_factory=_new_id, primary_key=True)
    parent_id: str = Field(index=True)
    name: str
    age: Optional[int] = None
    avatar: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ActivityDoc(SQLModel, table=True):
    __tablename__ = "activities"

    id: str = Field(default_factory=_new_id, primary_key=True)
    parent_id: str = Field(index=True)  # parent uid or "curated"
    name: str
    description: Optional[str] = None
    category: str
    min_age: Optional[int] = None
    max_age: Optional[int] = None
    duration: Optional[int] = None
    is_custom: bool = True
    image_url: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class TimerDoc(SQLModel, table=True):
    __tablename__ = "timers"

    id: str = Field(default_factory=_new_id, primary_key=True)
    parent_id: str = Field(index=True)
    child_id: str = Field(index=True)
    initial_duration: int  # minutes
    remaining_time: int  # seconds
    status: str = TimerStatus.ACTIVE.value  # active|paused|completed|cancelled
    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None
    activity_suggestion_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ActivityLogDoc(SQLModel, table=True):
    __tablename__ = "activity_logs"

    id: str = Field(default_factory=_new_id, primary_key=True)
    parent_id: str = Field(index=True)
    child_id: str
    activity_id: str
    timer_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    notes: Optional[str] = None


CURATED_ACTIVITY_SEED: tuple[Dict[str, Any], ...] = (
    {"name": "Animal walk relay", "category": "Movement", "duration": 10, "min_age": 3, "max_age": 9},
    {"name": "Paper plate masks", "category": "Crafts", "duration": 30, "min_age": 4},
    {"name": "Count the colours hunt", "category": "Learning", "duration": 15, "min_age": 3, "max_age": 7},
    {"name": "Build a blanket fort", "category": "Family Games", "duration": 25},
    {"name": "Sock matching race", "category": "Chores", "duration": 10, "min_age": 4},
    {"name": "Read a picture book aloud", "category": "Reading", "duration": 15},
    {"name": "Backyard scavenger hunt", "category": "Outdoor", "duration": 20, "min_age": 5},
)

_CHILD_FIELDS = frozenset({"name", "age", "avatar"})
_ACTIVITY_FIELDS = frozenset(
    {"name", "description", "category", "min_age", "max_age", "duration", "is_custom", "image_url"}
)
_TIMER_FIELDS = frozenset(
    {
        "child_id",
        "remaining_time",
        "status",
        "start_time",
        "end_time",
        "activity_suggestion_id",
    }
)


def make_engine(url: str) -> Engine:
    """Build an engine for ``url``; in-memory SQLite shares one connection."""

    if url in {"sqlite://", "sqlite:///:memory:"}:
        return create_engine(url, echo=False, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(url, echo=False, connect_args={"check_same_thread": False})


engine = make_engine(f"sqlite:///{SQLITE_FILE_NAME}")


# ---------------------------------------------------------------------------
# Database initialisation & migrations
# ---------------------------------------------------------------------------
def create_db_and_tables(target: Engine | None = None) -> None:
    SQLModel.metadata.create_all(target or engine)


def run_migrations(path: str | None = None) -> None:
    """Create the timer lookup index that the table models do not declare."""

    raw = sqlite3.connect(path or SQLITE_FILE_NAME)
    try:
        raw.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_timers_parent_status
            ON timers(parent_id, status);
            """
        )
        raw.commit()
    finally:
        raw.close()


# ---------------------------------------------------------------------------
# Document <-> record translation
# ---------------------------------------------------------------------------
def _profile_record(doc: UserProfileDoc) -> UserProfile:
    return UserProfile(
        uid=doc.uid,
        email=doc.email,
        display_name=doc.display_name,
        photo_url=doc.photo_url,
        created_at=doc.created_at,
    )


def _child_record(doc: ChildDoc) -> Child:
    return Child(
        id=doc.id,
        parent_id=doc.parent_id,
        name=doc.name,
        age=doc.age,
        avatar=doc.avatar,
        created_at=doc.created_at,
    )


def _activity_record(doc: ActivityDoc) -> Activity:
    return Activity(
        id=doc.id,
        parent_id=doc.parent_id,
        name=doc.name,
        description=doc.description,
        category=doc.category,
        min_age=doc.min_age,
        max_age=doc.max_age,
        duration=doc.duration,
        is_custom=doc.is_custom,
        image_url=doc.image_url,
        created_at=doc.created_at,
    )


def _timer_record(doc: TimerDoc) -> Timer:
    return Timer(
        id=doc.id,
        parent_id=doc.parent_id,
        child_id=doc.child_id,
        initial_duration=doc.initial_duration,
        remaining_time=doc.remaining_time,
        status=TimerStatus(doc.status),
        start_time=doc.start_time,
        end_time=doc.end_time,
        activity_suggestion_id=doc.activity_suggestion_id,
        created_at=doc.created_at,
        updated_at=doc.updated_at,
    )


def _log_record(doc: ActivityLogDoc) -> ActivityLog:
    return ActivityLog(
        id=doc.id,
        parent_id=doc.parent_id,
        child_id=doc.child_id,
        activity_id=doc.activity_id,
        timer_id=doc.timer_id,
        timestamp=doc.timestamp,
        notes=doc.notes,
    )


def _checked_fields(fields: Mapping[str, Any], allowed: frozenset[str], kind: str) -> Dict[str, Any]:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Cannot update {kind} field(s): {', '.join(sorted(unknown))}.")
    return dict(fields)


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------
class DocumentGateway:
    """Typed create/read/update/delete access to the document collections.

    Every call is a blocking SQLite round trip. The timer engine makes its
    completion and checkpoint writes from event-loop callbacks, which is
    acceptable only while the store is a local SQLite file.
    """

    new_uid = staticmethod(_new_id)

    def __init__(self, target: Engine | None = None, *, logger: StructuredLogger | None = None) -> None:
        self.engine = target or engine
        self.logger = logger or StructuredLogger(path=LOG_PATH, component="gateway")

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as exc:
            self.logger.error("persistence_error", operation=operation, error=str(exc))
            raise PersistenceError(f"Document store failed during {operation}.") from exc

    # ------------------------------------------------------------------
    # User profiles
    # ------------------------------------------------------------------
    def create_user_profile(
        self,
        uid: str,
        email: Optional[str],
        *,
        display_name: Optional[str] = None,
        photo_url: Optional[str] = None,
    ) -> UserProfile:
        """Create the profile document for ``uid`` unless it already exists."""

        with self._session("create_user_profile") as session:
            existing = session.get(UserProfileDoc, uid)
            if existing:
                return _profile_record(existing)
            fallback = email.split("@")[0] if email else uid
            doc = UserProfileDoc(
                uid=uid,
                email=email,
                display_name=display_name or fallback,
                photo_url=photo_url,
            )
            session.add(doc)
            session.commit()
            session.refresh(doc)
            return _profile_record(doc)

    def get_user_profile(self, uid: str) -> Optional[UserProfile]:
        with self._session("get_user_profile") as session:
            doc = session.get(UserProfileDoc, uid)
            return _profile_record(doc) if doc else None

    def find_user_profile_by_email(self, email: str) -> Optional[UserProfile]:
        with self._session("find_user_profile_by_email") as session:
            doc = session.exec(select(UserProfileDoc).where(UserProfileDoc.email == email)).first()
            return _profile_record(doc) if doc else None

    # ------------------------------------------------------------------
    # Children
    # ------------------------------------------------------------------
    def add_child(
        self,
        parent_id: str,
        name: str,
        *,
        age: Optional[int] = None,
        avatar: Optional[str] = None,
    ) -> Child:
        with self._session("add_child") as session:
            doc = ChildDoc(parent_id=parent_id, name=name, age=age, avatar=avatar)
            session.add(doc)
            session.commit()
            session.refresh(doc)
            return _child_record(doc)

    def get_child(self, child_id: str) -> Optional[Child]:
        with self._session("get_child") as session:
            doc = session.get(ChildDoc, child_id)
            return _child_record(doc) if doc else None

    def get_children(self, parent_id: str) -> List[Child]:
        with self._session("get_children") as session:
            docs = session.exec(
                select(ChildDoc).where(ChildDoc.parent_id == parent_id).order_by(ChildDoc.created_at)
            ).all()
            return [_child_record(doc) for doc in docs]

    def update_child(self, child_id: str, **fields: Any) -> Child:
        changes = _checked_fields(fields, _CHILD_FIELDS, "child")
        with self._session("update_child") as session:
            doc = session.get(ChildDoc, child_id)
            if not doc:
                raise ChildNotFoundError(f"Child '{child_id}' does not exist.")
            for key, value in changes.items():
                setattr(doc, key, value)
            session.add(doc)
            session.commit()
            session.refresh(doc)
            return _child_record(doc)

    def delete_child(self, child_id: str) -> None:
        with self._session("delete_child") as session:
            doc = session.get(ChildDoc, child_id)
            if doc:
                session.delete(doc)
                session.commit()

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------
    def add_activity(
        self,
        parent_id: str,
        name: str,
        category: str,
        *,
        description: Optional[str] = None,
        min_age: Optional[int] = None,
        max_age: Optional[int] = None,
        duration: Optional[int] = None,
        is_custom: bool = True,
        image_url: Optional[str] = None,
    ) -> Activity:
        with self._session("add_activity") as session:
            doc = ActivityDoc(
                parent_id=parent_id,
                name=name,
                category=category,
                description=description,
                min_age=min_age,
                max_age=max_age,
                duration=duration,
                is_custom=is_custom,
                image_url=image_url,
            )
            session.add(doc)
            session.commit()
            session.refresh(doc)
            return _activity_record(doc)

    def get_activity(self, activity_id: str) -> Optional[Activity]:
        with self._session("get_activity") as session:
            doc = session.get(ActivityDoc, activity_id)
            return _activity_record(doc) if doc else None

    def get_activities(self, parent_id: Optional[str] = None) -> List[Activity]:
        """List activities; a parent filter also includes the curated catalog."""

        query = select(ActivityDoc)
        if parent_id:
            query = query.where(col(ActivityDoc.parent_id).in_([parent_id, CURATED_OWNER]))
        query = query.order_by(ActivityDoc.created_at)
        with self._session("get_activities") as session:
            return [_activity_record(doc) for doc in session.exec(query).all()]

    def update_activity(self, activity_id: str, **fields: Any) -> Activity:
        changes = _checked_fields(fields, _ACTIVITY_FIELDS, "activity")
        with self._session("update_activity") as session:
            doc = session.get(ActivityDoc, activity_id)
            if not doc:
                raise ActivityNotFoundError(f"Activity '{activity_id}' does not exist.")
            for key, value in changes.items():
                setattr(doc, key, value)
            session.add(doc)
            session.commit()
            session.refresh(doc)
            return _activity_record(doc)

    def delete_activity(self, activity_id: str) -> None:
        with self._session("delete_activity") as session:
            doc = session.get(ActivityDoc, activity_id)
            if doc:
                session.delete(doc)
                session.commit()

    def seed_curated_activities(self) -> int:
        """Insert the shared catalog once; returns the number of new documents."""

        with self._session("seed_curated_activities") as session:
            existing = session.exec(select(ActivityDoc).where(ActivityDoc.parent_id == CURATED_OWNER)).first()
            if existing:
                return 0
            for entry in CURATED_ACTIVITY_SEED:
                session.add(ActivityDoc(parent_id=CURATED_OWNER, is_custom=False, **entry))
            session.commit()
        self.logger.log("curated_seeded", count=len(CURATED_ACTIVITY_SEED))
        return len(CURATED_ACTIVITY_SEED)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    def add_timer(
        self,
        parent_id: str,
        child_id: str,
        initial_duration: int,
        remaining_time: int,
        *,
        status: TimerStatus = TimerStatus.ACTIVE,
        start_time: Optional[datetime] = None,
    ) -> Timer:
        now = datetime.utcnow()
        with self._session("add_timer") as session:
            doc = TimerDoc(
                parent_id=parent_id,
                child_id=child_id,
                initial_duration=initial_duration,
                remaining_time=remaining_time,
                status=TimerStatus(status).value,
                start_time=start_time or now,
                created_at=now,
                updated_at=now,
            )
            session.add(doc)
            session.commit()
            session.refresh(doc)
            return _timer_record(doc)

    def get_timer(self, timer_id: str) -> Optional[Timer]:
        with self._session("get_timer") as session:
            doc = session.get(TimerDoc, timer_id)
            return _timer_record(doc) if doc else None

    def get_timers(self, parent_id: str, child_id: Optional[str] = None) -> List[Timer]:
        query = select(TimerDoc).where(TimerDoc.parent_id == parent_id)
        if child_id:
            query = query.where(TimerDoc.child_id == child_id)
        query = query.order_by(TimerDoc.created_at)
        with self._session("get_timers") as session:
            return [_timer_record(doc) for doc in session.exec(query).all()]

    def update_timer(self, timer_id: str, **fields: Any) -> Timer:
        """Apply ``fields`` to a timer document and refresh ``updated_at``."""

        changes = _checked_fields(fields, _TIMER_FIELDS, "timer")
        if "status" in changes:
            changes["status"] = TimerStatus(changes["status"]).value
        with self._session("update_timer") as session:
            doc = session.get(TimerDoc, timer_id)
            if not doc:
                raise TimerNotFoundError(f"Timer '{timer_id}' does not exist.")
            for key, value in changes.items():
                setattr(doc, key, value)
            doc.updated_at = datetime.utcnow()
            session.add(doc)
            session.commit()
            session.refresh(doc)
            return _timer_record(doc)

    def delete_timer(self, timer_id: str) -> None:
        with self._session("delete_timer") as session:
            doc = session.get(TimerDoc, timer_id)
            if doc:
                session.delete(doc)
                session.commit()

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------
    def log_activity(
        self,
        parent_id: str,
        child_id: str,
        activity_id: str,
        *,
        timer_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ActivityLog:
        with self._session("log_activity") as session:
            doc = ActivityLogDoc(
                parent_id=parent_id,
                child_id=child_id,
                activity_id=activity_id,
                timer_id=timer_id,
                notes=notes,
            )
            session.add(doc)
            session.commit()
            session.refresh(doc)
            return _log_record(doc)

    def get_activity_logs(self, parent_id: str, child_id: Optional[str] = None) -> List[ActivityLog]:
        """Newest first."""

        query = select(ActivityLogDoc).where(ActivityLogDoc.parent_id == parent_id)
        if child_id:
            query = query.where(ActivityLogDoc.child_id == child_id)
        query = query.order_by(desc(ActivityLogDoc.timestamp))
        with self._session("get_activity_logs") as session:
            return [_log_record(doc) for doc in session.exec(query).all()]


create_db_and_tables()
run_migrations()


__all__ = [
    "engine",
    "make_engine",
    "UserProfileDoc",
    "ChildDoc",
    "ActivityDoc",
    "TimerDoc",
    "ActivityLogDoc",
    "CURATED_ACTIVITY_SEED",
    "DocumentGateway",
    "create_db_and_tables",
    "run_migrations",
]
