from __future__ import annotations

import inspect

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel

from kidtimer.models import TimerStatus

PIN = "2468"


@pytest.fixture()
def webapp_env():
    import kidtimer.webapp as webapp

    SQLModel.metadata.drop_all(webapp.engine)
    SQLModel.metadata.create_all(webapp.engine)
    webapp.gateway.seed_curated_activities()
    webapp.registry.shutdown()
    yield webapp
    webapp.registry.shutdown()


@pytest.fixture()
def client(webapp_env) -> TestClient:
    return TestClient(webapp_env.app)


def sign_in(client: TestClient, email: str = "parent@example.com"):
    return client.post("/login", data={"email": email, "pin": PIN})


def parent_uid(webapp, email: str = "parent@example.com") -> str:
    profile = webapp.gateway.find_user_profile_by_email(email)
    assert profile is not None
    return profile.uid


def test_pages_require_sign_in(client) -> None:
    for path in ("/", "/dashboard", "/dashboard/children", "/dashboard/activities", "/dashboard/timers"):
        response = client.get(path, follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "/login"
    assert client.get("/api/timers").status_code == 401
    assert client.post("/api/timers/sync").status_code == 401
    assert client.get("/api/children").status_code == 401
    assert client.get("/api/activities").status_code == 401


def test_login_creates_profile_and_shows_dashboard(client, webapp_env) -> None:
    response = sign_in(client, "Parent@Example.com")

    assert response.status_code == 200
    assert "Welcome, parent@example.com!" in response.text
    assert "No children added yet." in response.text
    assert "No active timers." in response.text
    profile = webapp_env.gateway.find_user_profile_by_email("parent@example.com")
    assert profile.display_name == "parent"

    client.post("/logout")
    again = sign_in(client)
    assert "Welcome" in again.text
    assert parent_uid(webapp_env) == profile.uid


def test_wrong_pin_is_rejected(client) -> None:
    response = client.post("/login", data={"email": "wrong-pin@example.com", "pin": "0000"})

    assert "Incorrect email or PIN." in response.text
    assert client.get("/dashboard", follow_redirects=False).status_code == 302


def test_children_add_edit_delete(client, webapp_env) -> None:
    sign_in(client)

    page = client.post("/dashboard/children/add", data={"name": "", "age": ""})
    assert "Child name is required." in page.text
    page = client.post("/dashboard/children/add", data={"name": "Ava", "age": "six"})
    assert "Age must be a whole number." in page.text
    page = client.post("/dashboard/children/add", data={"name": "Ava", "age": "6"})
    assert "Added Ava." in page.text
    assert "Age: 6" in page.text

    uid = parent_uid(webapp_env)
    (child,) = webapp_env.gateway.get_children(uid)
    edit_form = client.get(f"/dashboard/children?edit={child.id}")
    assert "Edit Child" in edit_form.text

    page = client.post(
        "/dashboard/children/edit",
        data={"child_id": child.id, "name": "Ava Grace", "age": "7"},
    )
    assert "Updated Ava Grace." in page.text
    assert webapp_env.gateway.get_child(child.id).age == 7

    page = client.post("/dashboard/children/delete", data={"child_id": child.id})
    assert "Child removed." in page.text
    assert webapp_env.gateway.get_children(uid) == []


def test_activities_add_and_curated_protection(client, webapp_env) -> None:
    sign_in(client)
    uid = parent_uid(webapp_env)

    page = client.post("/dashboard/activities/add", data={"name": "", "category": "Crafts"})
    assert "Activity name and category are required." in page.text
    page = client.post(
        "/dashboard/activities/add",
        data={"name": "Lego tower", "category": "Crafts", "description": "Tallest wins"},
    )
    assert "Added Lego tower." in page.text
    assert "Curated" in page.text

    curated = next(activity for activity in webapp_env.gateway.get_activities(uid) if activity.is_curated)
    page = client.post("/dashboard/activities/delete", data={"activity_id": curated.id})
    assert "Curated activities cannot be changed." in page.text
    assert webapp_env.gateway.get_activity(curated.id) is not None

    mine = next(activity for activity in webapp_env.gateway.get_activities(uid) if not activity.is_curated)
    page = client.post(
        "/dashboard/activities/edit",
        data={"activity_id": mine.id, "name": "Lego city", "category": "Learning", "description": ""},
    )
    assert "Updated Lego city." in page.text
    page = client.post("/dashboard/activities/delete", data={"activity_id": mine.id})
    assert "Activity removed." in page.text


def test_timer_start_pause_resume_cancel(client, webapp_env) -> None:
    sign_in(client)
    uid = parent_uid(webapp_env)
    child = webapp_env.gateway.add_child(uid, "Ava")

    page = client.post("/dashboard/timers/start", data={"child_id": child.id, "duration": "0"})
    assert "Duration must be at least 1 minute." in page.text
    page = client.post("/dashboard/timers/start", data={"child_id": "", "duration": "15"})
    assert "Please select a child and set a duration." in page.text

    page = client.post("/dashboard/timers/start", data={"child_id": child.id, "duration": "15"})
    assert "Timer started for 15 minute(s)." in page.text
    assert "15:00 (active)" in page.text
    (timer,) = webapp_env.gateway.get_timers(uid)

    engine = webapp_env.registry.for_parent(uid)
    for _ in range(5):
        engine.tick(timer.id)
    page = client.post("/dashboard/timers/toggle", data={"timer_id": timer.id})
    assert "14:55 (paused)" in page.text
    stored = webapp_env.gateway.get_timer(timer.id)
    assert stored.status is TimerStatus.PAUSED
    assert stored.remaining_time == 895

    page = client.post("/dashboard/timers/toggle", data={"timer_id": timer.id})
    assert "14:55 (active)" in page.text

    dashboard = client.get("/dashboard")
    assert "14:55" in dashboard.text
    assert "Ava" in dashboard.text

    page = client.post("/dashboard/timers/cancel", data={"timer_id": timer.id})
    assert "Timer cancelled." in page.text
    assert "No active timers. Set one above!" in page.text
    assert webapp_env.gateway.get_timer(timer.id) is None


def test_finished_timer_can_be_logged(client, webapp_env) -> None:
    sign_in(client)
    uid = parent_uid(webapp_env)
    child = webapp_env.gateway.add_child(uid, "Ava")
    activity = webapp_env.gateway.add_activity(uid, "Puzzle", "Learning")
    client.post("/dashboard/timers/start", data={"child_id": child.id, "duration": "1"})
    (timer,) = webapp_env.gateway.get_timers(uid)

    engine = webapp_env.registry.for_parent(uid)
    completed = []
    for _ in range(60):
        completed.extend(engine.tick_all())
    assert [entry.id for entry in completed] == [timer.id]
    assert webapp_env.gateway.get_timer(timer.id).status is TimerStatus.COMPLETED

    page = client.get("/dashboard/timers")
    assert "Finished Timers" in page.text
    assert "1 min timer finished" in page.text

    page = client.post(
        "/dashboard/timers/log",
        data={"child_id": child.id, "activity_id": activity.id, "timer_id": timer.id, "notes": "All done"},
    )
    assert "Activity logged." in page.text
    dashboard = client.get("/dashboard")
    assert "did Puzzle" in dashboard.text
    assert "All done" in dashboard.text


def test_api_timers_lists_in_flight_timers(client, webapp_env) -> None:
    sign_in(client)
    uid = parent_uid(webapp_env)
    ava = webapp_env.gateway.add_child(uid, "Ava")
    ben = webapp_env.gateway.add_child(uid, "Ben")
    client.post("/dashboard/timers/start", data={"child_id": ava.id, "duration": "2"})
    client.post("/dashboard/timers/start", data={"child_id": ben.id, "duration": "5"})
    webapp_env.gateway.delete_child(ben.id)

    payload = client.get("/api/timers").json()

    assert payload["pending_sync"] == 0
    rows = {row["child_id"]: row for row in payload["timers"]}
    assert rows[ava.id]["child_name"] == "Ava"
    assert rows[ava.id]["remaining_display"] == "02:00"
    assert rows[ava.id]["status"] == "active"
    assert rows[ben.id]["child_name"] == "Unknown Child"
    assert client.post("/api/timers/sync").json() == {"replayed": 0, "pending": 0}


def test_timers_of_another_parent_are_not_reachable(client, webapp_env) -> None:
    other = webapp_env.gateway.create_user_profile("other-parent", "other@example.com")
    their_child = webapp_env.gateway.add_child(other.uid, "Zed")
    their_timer = webapp_env.gateway.add_timer(other.uid, their_child.id, 5, 300)
    sign_in(client)

    page = client.post("/dashboard/timers/start", data={"child_id": their_child.id, "duration": "5"})
    assert "does not exist" in page.text
    page = client.post("/dashboard/timers/cancel", data={"timer_id": their_timer.id})
    assert "does not exist" in page.text
    assert webapp_env.gateway.get_timer(their_timer.id) is not None
    assert client.get("/api/timers").json()["timers"] == []


def test_logout_discards_live_engine(client, webapp_env) -> None:
    sign_in(client)
    uid = parent_uid(webapp_env)
    child = webapp_env.gateway.add_child(uid, "Ava")
    client.post("/dashboard/timers/start", data={"child_id": child.id, "duration": "3"})
    assert uid in webapp_env.registry

    page = client.post("/logout")

    assert "KidTimer Sign-In" in page.text
    assert uid not in webapp_env.registry
    assert uid not in webapp_env.application._auth_states
    assert client.get("/api/timers").status_code == 401


def test_engine_routes_run_on_the_event_loop(webapp_env) -> None:
    application = webapp_env.application
    for route in (application.dashboard, application.logout, application.timers_page, application.api_timers):
        assert inspect.iscoroutinefunction(route), route.__name__


def test_dashboard_shows_live_countdown(client, webapp_env) -> None:
    sign_in(client)
    uid = parent_uid(webapp_env)
    child = webapp_env.gateway.add_child(uid, "Ava")
    client.post("/dashboard/timers/start", data={"child_id": child.id, "duration": "2"})
    engine = webapp_env.registry.for_parent(uid)
    (timer,) = engine.in_flight()
    for _ in range(3):
        engine.tick(timer.id)

    page = client.get("/dashboard")

    assert page.status_code == 200
    assert "01:57" in page.text
    assert webapp_env.gateway.get_timer(timer.id).remaining_time == 120
    assert webapp_env.registry.for_parent(uid) is engine


def test_api_children_and_activities(client, webapp_env) -> None:
    sign_in(client)
    uid = parent_uid(webapp_env)
    child = webapp_env.gateway.add_child(uid, "Ava", age=6)
    webapp_env.gateway.add_child("someone-else", "Zed")
    mine = webapp_env.gateway.add_activity(uid, "Puzzle", "Learning", description="500 pieces")

    children = client.get("/api/children").json()["children"]
    activities = client.get("/api/activities").json()["activities"]

    assert [(row["id"], row["name"], row["age"]) for row in children] == [(child.id, "Ava", 6)]
    by_id = {row["id"]: row for row in activities}
    assert by_id[mine.id]["description"] == "500 pieces"
    assert by_id[mine.id]["curated"] is False
    assert any(row["curated"] for row in activities)
