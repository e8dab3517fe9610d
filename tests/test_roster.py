from __future__ import annotations

import json

import pytest

from kidtimer.api import ApiExporter
from kidtimer.dashboard import build_dashboard
from kidtimer.engine import TimerEngine
from kidtimer.exceptions import ActivityNotFoundError, ChildNotFoundError, ValidationError
from kidtimer.models import TimerStatus, format_time
from kidtimer.roster import ActivityCatalog, ActivityJournal, ChildRoster, parse_age


@pytest.mark.parametrize(
    "raw, expected",
    [(None, None), ("", None), ("  ", None), ("7", 7), (0, 0), (" 12 ", 12)],
)
def test_parse_age_accepts_blank_and_whole_numbers(raw, expected) -> None:
    assert parse_age(raw) == expected


@pytest.mark.parametrize("raw", ["seven", "-1", "3.5", True])
def test_parse_age_rejects_bad_values(raw) -> None:
    with pytest.raises(ValidationError):
        parse_age(raw)


@pytest.mark.parametrize(
    "seconds, text",
    [(0, "00:00"), (59, "00:59"), (60, "01:00"), (895, "14:55"), (3600, "60:00"), (-4, "00:00")],
)
def test_format_time(seconds, text) -> None:
    assert format_time(seconds) == text


def test_child_roster_crud(gateway, parent_id) -> None:
    roster = ChildRoster(gateway, parent_id)

    child = roster.add("  Ava ", "6")
    assert (child.name, child.age) == ("Ava", 6)
    with pytest.raises(ValidationError, match="Child name is required."):
        roster.add("   ", "")

    updated = roster.update(child.id, "Ava", "")
    assert updated.age is None
    assert [entry.id for entry in roster.list()] == [child.id]

    roster.delete(child.id)
    assert roster.list() == []


def test_child_roster_hides_other_parents_children(gateway, parent_id) -> None:
    stranger = gateway.add_child("parent-2", "Ben")
    roster = ChildRoster(gateway, parent_id)

    with pytest.raises(ChildNotFoundError):
        roster.update(stranger.id, "Mine now", None)
    with pytest.raises(ChildNotFoundError):
        roster.delete(stranger.id)
    assert gateway.get_child(stranger.id).name == "Ben"


def test_activity_catalog_validation(gateway, parent_id) -> None:
    catalog = ActivityCatalog(gateway, parent_id)

    with pytest.raises(ValidationError, match="Activity name and category are required."):
        catalog.add("", "Crafts")
    with pytest.raises(ValidationError, match="Activity name and category are required."):
        catalog.add("Hopscotch", "")
    with pytest.raises(ValidationError, match="Unknown category"):
        catalog.add("Hopscotch", "Skydiving")

    activity = catalog.add("Hopscotch", "Outdoor", "Chalk squares on the patio")
    assert activity.is_custom
    assert not activity.is_curated
    edited = catalog.update(activity.id, "Hopscotch", "Movement", "")
    assert edited.category == "Movement"
    assert edited.description == ""


def test_curated_activities_are_read_only(gateway, parent_id) -> None:
    gateway.seed_curated_activities()
    catalog = ActivityCatalog(gateway, parent_id)
    curated = next(activity for activity in catalog.list() if activity.is_curated)

    assert catalog.get(curated.id).id == curated.id
    with pytest.raises(ValidationError, match="Curated activities cannot be changed."):
        catalog.update(curated.id, "Mine", "Crafts")
    with pytest.raises(ValidationError):
        catalog.delete(curated.id)
    mine = catalog.add("Board game", "Family Games")
    catalog.delete(mine.id)
    with pytest.raises(ActivityNotFoundError):
        catalog.get(mine.id)


def test_journal_records_and_lists_recent(gateway, parent_id, child) -> None:
    activity = gateway.add_activity(parent_id, "Puzzle", "Learning")
    journal = ActivityJournal(gateway, parent_id)

    entry = journal.record(child.id, activity.id, timer_id="", notes="  finished it  ")

    assert entry.timer_id is None
    assert entry.notes == "finished it"
    assert [log.id for log in journal.recent()] == [entry.id]
    with pytest.raises(ValidationError):
        journal.record("", activity.id)
    with pytest.raises(ActivityNotFoundError):
        journal.record(child.id, "missing")


def test_dashboard_cross_references_records(gateway, parent_id, child) -> None:
    gateway.seed_curated_activities()
    mine = gateway.add_activity(parent_id, "Puzzle", "Learning")
    gone = gateway.add_child(parent_id, "Ben")
    engine = TimerEngine(gateway, parent_id)
    running = engine.start(child.id, 15)
    orphan = engine.start(gone.id, 2)
    finished = engine.start(child.id, 1)
    for _ in range(60):
        engine.tick(finished.id)
    engine.tick(running.id)
    gateway.delete_child(gone.id)
    gateway.log_activity(parent_id, child.id, mine.id, notes="quick one")

    stored_view = build_dashboard(gateway, parent_id)
    live_view = build_dashboard(gateway, parent_id, engine=engine)

    assert [c.name for c in stored_view.children] == ["Ava"]
    assert len(stored_view.activities) == 3
    assert stored_view.activity_total == len(gateway.get_activities(parent_id))
    assert [card.timer_id for card in stored_view.timers] == [running.id, orphan.id]
    assert stored_view.timers[0].remaining == "15:00"
    assert live_view.timers[0].remaining == "14:59"
    assert live_view.timers[1].child_name == "Unknown Child"
    assert live_view.timers[0].status == "active"
    assert stored_view.recent_logs[0].activity_name == "Puzzle"
    assert stored_view.recent_logs[0].notes == "quick one"


def test_exporter_snapshot(gateway, parent_id, child) -> None:
    engine = TimerEngine(gateway, parent_id)
    timer = engine.start(child.id, 2)
    engine.tick(timer.id)
    exporter = ApiExporter()

    rows = exporter.timer_listing([timer], {child.id: child})
    orphans = exporter.timer_listing([timer], {})

    assert rows[0]["child_name"] == "Ava"
    assert rows[0]["remaining_display"] == "01:59"
    assert rows[0]["status"] == TimerStatus.ACTIVE.value
    assert orphans[0]["child_name"] == "Unknown Child"
    decoded = json.loads(exporter.to_json({"timers": rows}))
    assert decoded["timers"][0]["id"] == timer.id
    assert exporter.child_snapshot(child)["age"] == 6
