from __future__ import annotations

import sqlite3
import time

import pytest
from sqlmodel import SQLModel

from kidtimer.exceptions import ChildNotFoundError, PersistenceError, TimerNotFoundError
from kidtimer.models import CURATED_OWNER, TimerStatus
from kidtimer.webapp.persistence import (
    CURATED_ACTIVITY_SEED,
    create_db_and_tables,
    make_engine,
    run_migrations,
)


def test_profile_creation_is_idempotent(gateway) -> None:
    profile = gateway.create_user_profile("uid-1", "ada@example.com")
    assert profile.display_name == "ada"

    again = gateway.create_user_profile("uid-1", "other@example.com", display_name="Other")
    assert again.email == "ada@example.com"
    assert gateway.find_user_profile_by_email("ada@example.com").uid == "uid-1"
    assert gateway.get_user_profile("missing") is None


def test_children_are_scoped_to_parent(gateway, parent_id) -> None:
    ava = gateway.add_child(parent_id, "Ava", age=6)
    gateway.add_child("parent-2", "Ben")

    assert [child.name for child in gateway.get_children(parent_id)] == ["Ava"]
    updated = gateway.update_child(ava.id, name="Ava Grace", age=7)
    assert (updated.name, updated.age) == ("Ava Grace", 7)

    gateway.delete_child(ava.id)
    assert gateway.get_child(ava.id) is None
    gateway.delete_child(ava.id)


def test_update_missing_child_raises(gateway) -> None:
    with pytest.raises(ChildNotFoundError):
        gateway.update_child("missing", name="Nobody")


def test_update_rejects_unknown_fields(gateway, child) -> None:
    with pytest.raises(ValueError):
        gateway.update_child(child.id, parent_id="someone-else")


def test_activity_listing_includes_curated_catalog(gateway, parent_id) -> None:
    assert gateway.seed_curated_activities() == len(CURATED_ACTIVITY_SEED)
    assert gateway.seed_curated_activities() == 0
    mine = gateway.add_activity(parent_id, "Lego tower", "Crafts")
    gateway.add_activity("parent-2", "Not mine", "Reading")

    listed = gateway.get_activities(parent_id)

    owners = {activity.parent_id for activity in listed}
    assert owners == {parent_id, CURATED_OWNER}
    assert mine.id in {activity.id for activity in listed}
    assert len(listed) == len(CURATED_ACTIVITY_SEED) + 1
    assert len(gateway.get_activities()) == len(CURATED_ACTIVITY_SEED) + 2


def test_timer_update_refreshes_updated_at(gateway, parent_id, child) -> None:
    timer = gateway.add_timer(parent_id, child.id, 5, 300)
    time.sleep(0.01)

    updated = gateway.update_timer(timer.id, status=TimerStatus.PAUSED, remaining_time=250)

    assert updated.status is TimerStatus.PAUSED
    assert updated.remaining_time == 250
    assert updated.updated_at > timer.updated_at
    assert updated.created_at == timer.created_at


def test_timer_listing_filters_by_child(gateway, parent_id, child) -> None:
    sibling = gateway.add_child(parent_id, "Ben")
    gateway.add_timer(parent_id, child.id, 5, 300)
    gateway.add_timer(parent_id, sibling.id, 10, 600)
    gateway.add_timer("parent-2", child.id, 1, 60)

    assert len(gateway.get_timers(parent_id)) == 2
    assert [timer.child_id for timer in gateway.get_timers(parent_id, child_id=sibling.id)] == [sibling.id]


def test_missing_timer_update_raises_and_delete_is_noop(gateway) -> None:
    with pytest.raises(TimerNotFoundError):
        gateway.update_timer("missing", remaining_time=10)
    gateway.delete_timer("missing")


def test_activity_logs_are_newest_first(gateway, parent_id, child) -> None:
    activity = gateway.add_activity(parent_id, "Puzzle", "Learning")
    first = gateway.log_activity(parent_id, child.id, activity.id, notes="first")
    time.sleep(0.01)
    second = gateway.log_activity(parent_id, child.id, activity.id, notes="second")

    logs = gateway.get_activity_logs(parent_id)

    assert [entry.id for entry in logs] == [second.id, first.id]
    assert gateway.get_activity_logs("parent-2") == []


def test_store_failures_become_persistence_errors(gateway, parent_id) -> None:
    SQLModel.metadata.drop_all(gateway.engine)

    with pytest.raises(PersistenceError, match="get_children"):
        gateway.get_children(parent_id)
    with pytest.raises(PersistenceError):
        gateway.add_timer(parent_id, "child", 5, 300)

    failures = gateway.logger.entries("persistence_error")
    assert [entry["operation"] for entry in failures] == ["get_children", "add_timer"]


def test_run_migrations_adds_timer_index(tmp_path) -> None:
    db_path = tmp_path / "kidtimer.db"
    create_db_and_tables(make_engine(f"sqlite:///{db_path}"))

    run_migrations(str(db_path))
    run_migrations(str(db_path))

    raw = sqlite3.connect(db_path)
    try:
        indexes = {row[1] for row in raw.execute("PRAGMA index_list(timers);").fetchall()}
    finally:
        raw.close()
    assert "idx_timers_parent_status" in indexes
