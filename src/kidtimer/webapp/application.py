"""FastAPI frontend for KidTimer.

Parents sign in, manage their children and activities, and run countdown
timers.  Pages are rendered server side; timer state is owned by one
:class:`~kidtimer.engine.TimerEngine` per signed-in parent, and every route
that reaches an engine (timers, dashboard, logout) is ``async`` so the engine
is only ever touched from the event loop.
The module is import-compatible with ``uvicorn kidtimer.webapp:app``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from html import escape as html_escape
from typing import AsyncIterator, Dict, List, Optional, Tuple

from fastapi import FastAPI, Form, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.middleware.sessions import SessionMiddleware

from ..api import ApiExporter
from ..dashboard import build_dashboard, child_label
from ..engine import EngineRegistry, TimerEngine
from ..exceptions import (
    AuthenticationError,
    CreationError,
    KidTimerError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from ..models import ACTIVITY_CATEGORIES, DEFAULT_ACTIVITY_CATEGORY, DEFAULT_TIMER_MINUTES, TimerStatus
from ..ops import StructuredLogger
from ..roster import ActivityCatalog, ActivityJournal, ChildRoster
from ..security import AuthManager, AuthState, SignedInUser
from .config import (
    ACCESS_PIN,
    CHECKPOINT_TICKS,
    LOG_PATH,
    LOGIN_LOCKOUT_MINUTES,
    LOGIN_MAX_ATTEMPTS,
    PERSIST_REMAINING_ON_PAUSE,
    SEED_CURATED_ACTIVITIES,
    SESSION_SECRET,
    TICK_SECONDS,
)
from .persistence import DocumentGateway, engine

# ---------------------------------------------------------------------------
# Application wiring
# ---------------------------------------------------------------------------
logger = StructuredLogger(path=LOG_PATH, component="webapp")
gateway = DocumentGateway(engine, logger=logger.child("gateway"))
registry = EngineRegistry(
    gateway,
    interval=TICK_SECONDS,
    checkpoint_every=CHECKPOINT_TICKS,
    persist_remaining_on_pause=PERSIST_REMAINING_ON_PAUSE,
    logger=logger.child("engine"),
)
auth_manager = AuthManager(
    ACCESS_PIN,
    max_attempts=LOGIN_MAX_ATTEMPTS,
    lockout_minutes=LOGIN_LOCKOUT_MINUTES,
)
exporter = ApiExporter()
_auth_states: Dict[str, AuthState] = {}

if SEED_CURATED_ACTIVITIES:
    gateway.seed_curated_activities()


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    registry.shutdown()


app = FastAPI(title="KidTimer", lifespan=lifespan)
app.add_middleware(
    SessionMiddleware,
    secret_key=SESSION_SECRET,
    same_site="lax",
    max_age=None,
)

GENERIC_PERSISTENCE_NOTICE = "We couldn't reach the database. Please try again."


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------
def parent_authed(request: Request) -> Optional[SignedInUser]:
    uid = request.session.get("parent_uid")
    if not uid:
        return None
    return SignedInUser(uid=uid, email=request.session.get("parent_email"))


def require_parent(request: Request) -> Optional[RedirectResponse]:
    if not parent_authed(request):
        return RedirectResponse("/login", status_code=302)
    return None


def auth_state_for(uid: str) -> AuthState:
    """Return the observable sign-in state shared by every session of ``uid``."""

    state = _auth_states.get(uid)
    if state is None:
        state = AuthState()

        def _on_change(user: Optional[SignedInUser]) -> None:
            if user is None:
                registry.discard(uid)
                _auth_states.pop(uid, None)

        state.subscribe(_on_change)
        _auth_states[uid] = state
    return state


def set_notice(request: Request, message: str, kind: str = "info") -> None:
    request.session["notice"] = message
    request.session["notice_kind"] = kind


def pop_notice(request: Request) -> Tuple[Optional[str], str]:
    message = request.session.pop("notice", None)
    kind = request.session.pop("notice_kind", "info")
    return message, kind


def notice_for_error(request: Request, exc: KidTimerError) -> None:
    if isinstance(exc, PersistenceError):
        logger.error("request_failed", path=request.url.path, error=str(exc))
        message = str(exc) if isinstance(exc, CreationError) else GENERIC_PERSISTENCE_NOTICE
        set_notice(request, message, "error")
    else:
        set_notice(request, str(exc), "error")


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------
def base_styles() -> str:
    return """
    <style>
    body{font-family:Roboto,Arial,sans-serif;background:#f3f4f6;color:#111827;margin:0;}
    .wrap{max-width:880px;margin:0 auto;padding:24px 16px;}
    .card{background:#fff;border-radius:12px;box-shadow:0 1px 3px rgba(15,23,42,0.12);padding:20px;margin-bottom:20px;}
    h1{font-size:28px;margin:0 0 16px;}
    h2{font-size:20px;margin:0 0 12px;}
    nav a{margin-right:14px;color:#2563eb;text-decoration:none;font-weight:600;}
    label{display:block;font-weight:700;font-size:14px;margin:10px 0 4px;}
    input,select,textarea{width:100%;padding:8px 10px;border:1px solid #d1d5db;border-radius:8px;box-sizing:border-box;}
    button{background:#2563eb;color:#fff;border:none;border-radius:8px;padding:8px 14px;font-weight:700;cursor:pointer;margin-top:10px;}
    button.warn{background:#eab308;} button.danger{background:#dc2626;} button.muted{background:#6b7280;}
    ul.rows{list-style:none;padding:0;margin:0;}
    ul.rows li{display:flex;justify-content:space-between;align-items:center;background:#f9fafb;border-radius:10px;padding:10px 12px;margin-bottom:8px;}
    ul.rows li form{display:inline;margin-left:6px;}
    .muted{color:#6b7280;font-size:14px;}
    .notice{padding:10px 12px;border-radius:8px;margin-bottom:16px;background:#dbeafe;}
    .notice.error{background:#fee2e2;color:#991b1b;} .notice.success{background:#dcfce7;color:#166534;}
    .clock{font-variant-numeric:tabular-nums;font-weight:700;}
    </style>
    """


def nav_bar() -> str:
    return (
        "<nav class='card'><a href='/dashboard'>Dashboard</a><a href='/dashboard/children'>Children</a>"
        "<a href='/dashboard/activities'>Activities</a><a href='/dashboard/timers'>Timers</a>"
        "<form method='post' action='/logout' style='display:inline;float:right;margin:0;'>"
        "<button class='muted' style='margin:0;'>Sign Out</button></form></nav>"
    )


def frame(title: str, inner: str, head_extra: str = "") -> str:
    return (
        "<html><head><meta charset='utf-8'><meta name='viewport' "
        f"content='width=device-width,initial-scale=1'>{head_extra}<title>{html_escape(title)}</title>"
        f"{base_styles()}</head><body><div class='wrap'>{inner}</div></body></html>"
    )


def render_page(
    request: Optional[Request],
    title: str,
    inner: str,
    *,
    head_extra: str = "",
    status_code: int = 200,
    with_nav: bool = True,
) -> HTMLResponse:
    notice_html = ""
    if request is not None:
        message, kind = pop_notice(request)
        if message:
            notice_html = f"<div class='notice {html_escape(kind)}'>{html_escape(message)}</div>"
    body = (nav_bar() if with_nav else "") + notice_html + inner
    return HTMLResponse(frame(title, body, head_extra=head_extra), status_code=status_code)


def _options(pairs: List[Tuple[str, str]], selected: str) -> str:
    rendered = []
    for value, label in pairs:
        mark = " selected" if value == selected else ""
        rendered.append(f"<option value='{html_escape(value)}'{mark}>{html_escape(label)}</option>")
    return "".join(rendered)


def _confirm(message: str) -> str:
    return f" onsubmit=\"return confirm('{html_escape(message)}');\""


# ---------------------------------------------------------------------------
# Sign-in
# ---------------------------------------------------------------------------
@app.get("/", response_class=HTMLResponse)
def landing(request: Request):
    if parent_authed(request):
        return RedirectResponse("/dashboard", status_code=302)
    return RedirectResponse("/login", status_code=302)


@app.get("/login", response_class=HTMLResponse)
def login_page(request: Request):
    if parent_authed(request):
        return RedirectResponse("/dashboard", status_code=302)
    inner = """
    <div class='card'>
      <h1>KidTimer Sign-In</h1>
      <form method='post' action='/login'>
        <label>Email</label><input name='email' type='email' placeholder='you@example.com' required>
        <label>Household PIN</label><input name='pin' type='password' required>
        <button type='submit'>Sign In</button>
      </form>
    </div>
    """
    return render_page(request, "KidTimer Sign In", inner, with_nav=False)


@app.post("/login")
def login(request: Request, email: str = Form(""), pin: str = Form("")):
    try:
        normalised = auth_manager.verify(email, pin)
        profile = gateway.find_user_profile_by_email(normalised)
        if profile is None:
            profile = gateway.create_user_profile(DocumentGateway.new_uid(), normalised)
    except AuthenticationError as exc:
        logger.log("login_rejected", email=(email or "").strip().lower())
        set_notice(request, str(exc), "error")
        return RedirectResponse("/login", status_code=302)
    except PersistenceError as exc:
        notice_for_error(request, exc)
        return RedirectResponse("/login", status_code=302)
    request.session["parent_uid"] = profile.uid
    request.session["parent_email"] = profile.email
    auth_state_for(profile.uid).sign_in(SignedInUser(uid=profile.uid, email=profile.email))
    logger.log("login", uid=profile.uid)
    return RedirectResponse("/dashboard", status_code=302)


@app.post("/logout")
async def logout(request: Request):
    user = parent_authed(request)
    request.session.clear()
    if user:
        auth_state_for(user.uid).sign_out()
        logger.log("logout", uid=user.uid)
    return RedirectResponse("/login", status_code=302)


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------
@app.get("/dashboard", response_class=HTMLResponse)
async def dashboard(request: Request):
    if (redirect := require_parent(request)) is not None:
        return redirect
    user = parent_authed(request)
    assert user is not None
    live = registry.for_parent(user.uid) if user.uid in registry else None
    try:
        view = build_dashboard(gateway, user.uid, engine=live)
    except PersistenceError as exc:
        notice_for_error(request, exc)
        return render_page(request, "Dashboard", "<div class='card'><p>Dashboard unavailable.</p></div>")

    if view.children:
        child_items = "".join(
            f"<li><div><strong>{html_escape(child.name)}</strong>"
            + (f"<div class='muted'>Age: {child.age}</div>" if child.age is not None else "")
            + "</div></li>"
            for child in view.children
        )
        children_html = f"<ul class='rows'>{child_items}</ul>"
    else:
        children_html = "<p>No children added yet. <a href='/dashboard/children'>Add one here</a>.</p>"

    if view.activities:
        activity_items = "".join(
            f"<li><strong>{html_escape(activity.name)}</strong> <span class='muted'>({html_escape(activity.category)})</span></li>"
            for activity in view.activities
        )
        activities_html = f"<ul class='rows'>{activity_items}</ul>"
    else:
        activities_html = "<p>No activities added yet. <a href='/dashboard/activities'>Add one here</a>.</p>"

    if view.timers:
        timer_items = "".join(
            f"<li><div><strong>{html_escape(card.child_name)}</strong>"
            f"<div class='muted'><span class='clock'>{card.remaining}</span> ({card.status})</div></div>"
            "<a href='/dashboard/timers'>Manage</a></li>"
            for card in view.timers
        )
        timers_html = f"<ul class='rows'>{timer_items}</ul>"
    else:
        timers_html = "<p>No active timers. <a href='/dashboard/timers'>Set one here</a>.</p>"

    if view.recent_logs:
        log_items = "".join(
            f"<li><div><strong>{html_escape(line.child_name)}</strong> did {html_escape(line.activity_name)}"
            + (f"<div class='muted'>{html_escape(line.notes)}</div>" if line.notes else "")
            + f"</div><span class='muted'>{line.timestamp}</span></li>"
            for line in view.recent_logs
        )
        logs_html = f"<ul class='rows'>{log_items}</ul>"
    else:
        logs_html = "<p class='muted'>Nothing logged yet.</p>"

    inner = f"""
    <div class='card'>
      <h1>Dashboard</h1>
      <p>Welcome, {html_escape(user.email or '')}!</p>
    </div>
    <div class='card'><h2>Your Children</h2>{children_html}<a href='/dashboard/children'>Manage Children</a></div>
    <div class='card'><h2>Your Activities</h2>{activities_html}
      <p class='muted'>{view.activity_total} available.</p><a href='/dashboard/activities'>Manage Activities</a></div>
    <div class='card'><h2>Active Timers</h2>{timers_html}<a href='/dashboard/timers'>Manage Timers</a></div>
    <div class='card'><h2>Recent Activity</h2>{logs_html}</div>
    """
    return render_page(request, "Dashboard", inner)


# ---------------------------------------------------------------------------
# Children
# ---------------------------------------------------------------------------
@app.get("/dashboard/children", response_class=HTMLResponse)
def children_page(request: Request, edit: Optional[str] = Query(None)):
    if (redirect := require_parent(request)) is not None:
        return redirect
    user = parent_authed(request)
    assert user is not None
    roster = ChildRoster(gateway, user.uid)
    try:
        children = roster.list()
    except PersistenceError as exc:
        notice_for_error(request, exc)
        children = []
    editing = next((child for child in children if child.id == edit), None)

    if editing:
        age_value = "" if editing.age is None else str(editing.age)
        form_html = f"""
        <h2>Edit Child</h2>
        <form method='post' action='/dashboard/children/edit'>
          <input type='hidden' name='child_id' value='{html_escape(editing.id)}'>
          <label>Name</label><input name='name' value='{html_escape(editing.name)}' required>
          <label>Age (optional)</label><input name='age' type='number' min='0' value='{age_value}'>
          <button type='submit'>Update Child</button>
          <a href='/dashboard/children'><button type='button' class='muted'>Cancel Edit</button></a>
        </form>
        """
    else:
        form_html = """
        <h2>Add New Child</h2>
        <form method='post' action='/dashboard/children/add'>
          <label>Name</label><input name='name' required>
          <label>Age (optional)</label><input name='age' type='number' min='0'>
          <button type='submit'>Add Child</button>
        </form>
        """

    if children:
        items = "".join(
            f"<li><div><strong>{html_escape(child.name)}</strong>"
            + (f"<div class='muted'>Age: {child.age}</div>" if child.age is not None else "")
            + "</div><div>"
            f"<a href='/dashboard/children?edit={html_escape(child.id)}'><button type='button' class='warn'>Edit</button></a>"
            f"<form method='post' action='/dashboard/children/delete'{_confirm('Are you sure you want to delete this child?')}>"
            f"<input type='hidden' name='child_id' value='{html_escape(child.id)}'>"
            "<button class='danger'>Delete</button></form></div></li>"
            for child in children
        )
        list_html = f"<ul class='rows'>{items}</ul>"
    else:
        list_html = "<p>No children added yet.</p>"

    inner = f"""
    <div class='card'><h1>Manage Children</h1>{form_html}</div>
    <div class='card'><h2>Your Children</h2>{list_html}</div>
    """
    return render_page(request, "Children", inner)


@app.post("/dashboard/children/add")
def children_add(request: Request, name: str = Form(""), age: str = Form("")):
    if (redirect := require_parent(request)) is not None:
        return redirect
    user = parent_authed(request)
    assert user is not None
    try:
        child = ChildRoster(gateway, user.uid).add(name, age)
    except KidTimerError as exc:
        notice_for_error(request, exc)
    else:
        set_notice(request, f"Added {child.name}.", "success")
    return RedirectResponse("/dashboard/children", status_code=302)


@app.post("/dashboard/children/edit")
def children_edit(request: Request, child_id: str = Form(...), name: str = Form(""), age: str = Form("")):
    if (redirect := require_parent(request)) is not None:
        return redirect
    user = parent_authed(request)
    assert user is not None
    try:
        child = ChildRoster(gateway, user.uid).update(child_id, name, age)
    except KidTimerError as exc:
        notice_for_error(request, exc)
        target = "/dashboard/children" if isinstance(exc, NotFoundError) else f"/dashboard/children?edit={child_id}"
        return RedirectResponse(target, status_code=302)
    set_notice(request, f"Updated {child.name}.", "success")
    return RedirectResponse("/dashboard/children", status_code=302)


@app.post("/dashboard/children/delete")
def children_delete(request: Request, child_id: str = Form(...)):
    if (redirect := require_parent(request)) is not None:
        return redirect
    user = parent_authed(request)
    assert user is not None
    try:
        ChildRoster(gateway, user.uid).delete(child_id)
    except KidTimerError as exc:
        notice_for_error(request, exc)
    else:
        set_notice(request, "Child removed.", "success")
    return RedirectResponse("/dashboard/children", status_code=302)


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------
@app.get("/dashboard/activities", response_class=HTMLResponse)
def activities_page(request: Request, edit: Optional[str] = Query(None)):
    if (redirect := require_parent(request)) is not None:
        return redirect
    user = parent_authed(request)
    assert user is not None
    catalog = ActivityCatalog(gateway, user.uid)
    try:
        activities = catalog.list()
    except PersistenceError as exc:
        notice_for_error(request, exc)
        activities = []
    editing = next((activity for activity in activities if activity.id == edit and not activity.is_curated), None)
    category_pairs = [(category, category) for category in ACTIVITY_CATEGORIES]

    if editing:
        form_html = f"""
        <h2>Edit Activity</h2>
        <form method='post' action='/dashboard/activities/edit'>
          <input type='hidden' name='activity_id' value='{html_escape(editing.id)}'>
          <label>Name</label><input name='name' value='{html_escape(editing.name)}' required>
          <label>Description</label><textarea name='description'>{html_escape(editing.description or '')}</textarea>
          <label>Category</label><select name='category'>{_options(category_pairs, editing.category)}</select>
          <button type='submit'>Update Activity</button>
          <a href='/dashboard/activities'><button type='button' class='muted'>Cancel Edit</button></a>
        </form>
        """
    else:
        form_html = f"""
        <h2>Add New Activity</h2>
        <form method='post' action='/dashboard/activities/add'>
          <label>Name</label><input name='name' required>
          <label>Description</label><textarea name='description'></textarea>
          <label>Category</label><select name='category'>{_options(category_pairs, DEFAULT_ACTIVITY_CATEGORY)}</select>
          <button type='submit'>Add Activity</button>
        </form>
        """

    rows = []
    for activity in activities:
        controls = "<span class='muted'>Curated</span>"
        if not activity.is_curated:
            controls = (
                f"<a href='/dashboard/activities?edit={html_escape(activity.id)}'><button type='button' class='warn'>Edit</button></a>"
                f"<form method='post' action='/dashboard/activities/delete'{_confirm('Are you sure you want to delete this activity?')}>"
                f"<input type='hidden' name='activity_id' value='{html_escape(activity.id)}'>"
                "<button class='danger'>Delete</button></form>"
            )
        description = f"<div class='muted'>{html_escape(activity.description)}</div>" if activity.description else ""
        rows.append(
            f"<li><div><strong>{html_escape(activity.name)}</strong> "
            f"<span class='muted'>({html_escape(activity.category)})</span>{description}</div><div>{controls}</div></li>"
        )
    list_html = f"<ul class='rows'>{''.join(rows)}</ul>" if rows else "<p>No activities added yet.</p>"

    inner = f"""
    <div class='card'><h1>Manage Activities</h1>{form_html}</div>
    <div class='card'><h2>Your Activities</h2>{list_html}</div>
    """
    return render_page(request, "Activities", inner)


@app.post("/dashboard/activities/add")
def activities_add(
    request: Request,
    name: str = Form(""),
    category: str = Form(""),
    description: str = Form(""),
):
    if (redirect := require_parent(request)) is not None:
        return redirect
    user = parent_authed(request)
    assert user is not None
    try:
        activity = ActivityCatalog(gateway, user.uid).add(name, category, description)
    except KidTimerError as exc:
        notice_for_error(request, exc)
    else:
        set_notice(request, f"Added {activity.name}.", "success")
    return RedirectResponse("/dashboard/activities", status_code=302)


@app.post("/dashboard/activities/edit")
def activities_edit(
    request: Request,
    activity_id: str = Form(...),
    name: str = Form(""),
    category: str = Form(""),
    description: str = Form(""),
):
    if (redirect := require_parent(request)) is not None:
        return redirect
    user = parent_authed(request)
    assert user is not None
    try:
        activity = ActivityCatalog(gateway, user.uid).update(activity_id, name, category, description)
    except KidTimerError as exc:
        notice_for_error(request, exc)
        return RedirectResponse("/dashboard/activities", status_code=302)
    set_notice(request, f"Updated {activity.name}.", "success")
    return RedirectResponse("/dashboard/activities", status_code=302)


@app.post("/dashboard/activities/delete")
def activities_delete(request: Request, activity_id: str = Form(...)):
    if (redirect := require_parent(request)) is not None:
        return redirect
    user = parent_authed(request)
    assert user is not None
    try:
        ActivityCatalog(gateway, user.uid).delete(activity_id)
    except KidTimerError as exc:
        notice_for_error(request, exc)
    else:
        set_notice(request, "Activity removed.", "success")
    return RedirectResponse("/dashboard/activities", status_code=302)


# ---------------------------------------------------------------------------
# Timers
# ---------------------------------------------------------------------------
def _engine_for(request: Request) -> Optional[TimerEngine]:
    user = parent_authed(request)
    if user is None:
        return None
    engine_ = registry.for_parent(user.uid)
    engine_.refresh()
    return engine_


def _parse_duration(raw: str) -> int:
    text = (raw or "").strip()
    if not text:
        raise ValidationError("Please select a child and set a duration.")
    try:
        return int(text)
    except ValueError as exc:
        raise ValidationError("Duration must be a whole number of minutes.") from exc


TIMER_POLL_JS = """
<script>
(function(){
  async function poll(){
    try {
      const resp = await fetch('/api/timers', {credentials: 'same-origin'});
      if (!resp.ok) { return; }
      const data = await resp.json();
      const seen = new Set();
      data.timers.forEach(function(timer){
        seen.add(timer.id);
        const el = document.querySelector("[data-timer='" + timer.id + "']");
        if (el) { el.textContent = timer.remaining_display + ' (' + timer.status + ')'; }
      });
      document.querySelectorAll('[data-timer]').forEach(function(el){
        if (!seen.has(el.getAttribute('data-timer'))) { window.location.reload(); }
      });
    } catch (err) {}
  }
  setInterval(poll, 1000);
})();
</script>
"""


@app.get("/dashboard/timers", response_class=HTMLResponse)
async def timers_page(request: Request):
    if (redirect := require_parent(request)) is not None:
        return redirect
    user = parent_authed(request)
    assert user is not None
    try:
        engine_ = _engine_for(request)
        assert engine_ is not None
        children = ChildRoster(gateway, user.uid).list()
        activities = ActivityCatalog(gateway, user.uid).list()
    except PersistenceError as exc:
        notice_for_error(request, exc)
        return render_page(request, "Timers", "<div class='card'><p>Timers unavailable right now.</p></div>")
    by_child = {child.id: child for child in children}
    child_pairs = [("", "-- Select a child --")] + [(child.id, child.name) for child in children]

    form_html = f"""
    <h2>Set New Timer</h2>
    <form method='post' action='/dashboard/timers/start'>
      <label>Select Child</label><select name='child_id' required>{_options(child_pairs, '')}</select>
      <label>Duration (minutes)</label><input name='duration' type='number' min='1' value='{DEFAULT_TIMER_MINUTES}' required>
      <button type='submit'>Start Timer</button>
    </form>
    """

    rows = []
    for timer in engine_.in_flight():
        toggle_label = "Pause" if timer.status is TimerStatus.ACTIVE else "Resume"
        rows.append(
            f"<li><div><strong>{html_escape(child_label(by_child, timer.child_id))}</strong>"
            f"<div class='muted clock' data-timer='{html_escape(timer.id)}'>{timer.formatted_remaining()} ({timer.status.value})</div></div><div>"
            "<form method='post' action='/dashboard/timers/toggle'>"
            f"<input type='hidden' name='timer_id' value='{html_escape(timer.id)}'>"
            f"<button class='warn'>{toggle_label}</button></form>"
            f"<form method='post' action='/dashboard/timers/cancel'{_confirm('Are you sure you want to cancel this timer?')}>"
            f"<input type='hidden' name='timer_id' value='{html_escape(timer.id)}'>"
            "<button class='danger'>Cancel</button></form></div></li>"
        )
    active_html = f"<ul class='rows'>{''.join(rows)}</ul>" if rows else "<p>No active timers. Set one above!</p>"

    finished = [timer for timer in engine_.timers() if timer.status is TimerStatus.COMPLETED][-5:]
    activity_pairs = [(activity.id, activity.name) for activity in activities]
    finished_rows = []
    for timer in reversed(finished):
        finished_rows.append(
            f"<li><div><strong>{html_escape(child_label(by_child, timer.child_id))}</strong>"
            f"<div class='muted'>{timer.initial_duration} min timer finished</div></div>"
            "<form method='post' action='/dashboard/timers/log'>"
            f"<input type='hidden' name='timer_id' value='{html_escape(timer.id)}'>"
            f"<input type='hidden' name='child_id' value='{html_escape(timer.child_id)}'>"
            f"<select name='activity_id'>{_options(activity_pairs, '')}</select>"
            "<input name='notes' placeholder='notes (optional)'>"
            "<button>Log Activity</button></form></li>"
        )
    finished_html = (
        f"<div class='card'><h2>Finished Timers</h2><ul class='rows'>{''.join(finished_rows)}</ul></div>"
        if finished_rows and activity_pairs
        else ""
    )

    pending = engine_.pending_sync()
    sync_html = ""
    if pending:
        sync_html = (
            f"<div class='card'><p>{len(pending)} timer change(s) have not been saved yet.</p>"
            "<form method='post' action='/dashboard/timers/sync'><button>Retry Saving</button></form></div>"
        )

    inner = f"""
    <div class='card'><h1>Manage Timers</h1>{form_html}</div>
    {sync_html}
    <div class='card'><h2>Active Timers</h2>{active_html}</div>
    {finished_html}
    """
    return render_page(request, "Timers", inner, head_extra=TIMER_POLL_JS if rows else "")


@app.post("/dashboard/timers/start")
async def timers_start(request: Request, child_id: str = Form(""), duration: str = Form("")):
    if (redirect := require_parent(request)) is not None:
        return redirect
    try:
        engine_ = _engine_for(request)
        assert engine_ is not None
        timer = engine_.start(child_id, _parse_duration(duration))
    except KidTimerError as exc:
        notice_for_error(request, exc)
    else:
        set_notice(request, f"Timer started for {timer.initial_duration} minute(s).", "success")
    return RedirectResponse("/dashboard/timers", status_code=302)


@app.post("/dashboard/timers/toggle")
async def timers_toggle(request: Request, timer_id: str = Form(...)):
    if (redirect := require_parent(request)) is not None:
        return redirect
    try:
        engine_ = _engine_for(request)
        assert engine_ is not None
        engine_.toggle(timer_id)
    except KidTimerError as exc:
        notice_for_error(request, exc)
    return RedirectResponse("/dashboard/timers", status_code=302)


@app.post("/dashboard/timers/cancel")
async def timers_cancel(request: Request, timer_id: str = Form(...)):
    if (redirect := require_parent(request)) is not None:
        return redirect
    try:
        engine_ = _engine_for(request)
        assert engine_ is not None
        engine_.cancel(timer_id)
    except KidTimerError as exc:
        notice_for_error(request, exc)
    else:
        set_notice(request, "Timer cancelled.", "success")
    return RedirectResponse("/dashboard/timers", status_code=302)


@app.post("/dashboard/timers/sync")
async def timers_sync(request: Request):
    if (redirect := require_parent(request)) is not None:
        return redirect
    try:
        engine_ = _engine_for(request)
        assert engine_ is not None
        replayed = engine_.sync()
    except KidTimerError as exc:
        notice_for_error(request, exc)
    else:
        remaining = len(engine_.pending_sync())
        kind = "success" if not remaining else "error"
        set_notice(request, f"Saved {replayed} change(s); {remaining} still pending.", kind)
    return RedirectResponse("/dashboard/timers", status_code=302)


@app.post("/dashboard/timers/log")
def timers_log(
    request: Request,
    child_id: str = Form(""),
    activity_id: str = Form(""),
    timer_id: str = Form(""),
    notes: str = Form(""),
):
    if (redirect := require_parent(request)) is not None:
        return redirect
    user = parent_authed(request)
    assert user is not None
    try:
        ActivityJournal(gateway, user.uid).record(child_id, activity_id, timer_id=timer_id, notes=notes)
    except KidTimerError as exc:
        notice_for_error(request, exc)
    else:
        set_notice(request, "Activity logged.", "success")
    return RedirectResponse("/dashboard/timers", status_code=302)


# ---------------------------------------------------------------------------
# JSON endpoints
# ---------------------------------------------------------------------------
@app.get("/api/timers")
async def api_timers(request: Request):
    user = parent_authed(request)
    if user is None:
        return JSONResponse({"detail": "Not signed in."}, status_code=401)
    try:
        engine_ = _engine_for(request)
        assert engine_ is not None
        children = {child.id: child for child in gateway.get_children(user.uid)}
    except PersistenceError as exc:
        logger.error("request_failed", path=request.url.path, error=str(exc))
        return JSONResponse({"detail": str(exc)}, status_code=503)
    return JSONResponse(
        {
            "timers": exporter.timer_listing(engine_.in_flight(), children),
            "pending_sync": len(engine_.pending_sync()),
        }
    )


@app.post("/api/timers/sync")
async def api_timers_sync(request: Request):
    user = parent_authed(request)
    if user is None:
        return JSONResponse({"detail": "Not signed in."}, status_code=401)
    try:
        engine_ = _engine_for(request)
        assert engine_ is not None
        replayed = engine_.sync()
    except PersistenceError as exc:
        return JSONResponse({"detail": str(exc)}, status_code=503)
    return JSONResponse({"replayed": replayed, "pending": len(engine_.pending_sync())})


@app.get("/api/children")
def api_children(request: Request):
    user = parent_authed(request)
    if user is None:
        return JSONResponse({"detail": "Not signed in."}, status_code=401)
    try:
        children = ChildRoster(gateway, user.uid).list()
    except PersistenceError as exc:
        return JSONResponse({"detail": str(exc)}, status_code=503)
    return JSONResponse({"children": [exporter.child_snapshot(child) for child in children]})


@app.get("/api/activities")
def api_activities(request: Request):
    user = parent_authed(request)
    if user is None:
        return JSONResponse({"detail": "Not signed in."}, status_code=401)
    try:
        activities = ActivityCatalog(gateway, user.uid).list()
    except PersistenceError as exc:
        return JSONResponse({"detail": str(exc)}, status_code=503)
    return JSONResponse({"activities": [exporter.activity_snapshot(activity) for activity in activities]})


__all__ = [
    "app",
    "auth_manager",
    "auth_state_for",
    "exporter",
    "gateway",
    "logger",
    "registry",
]
