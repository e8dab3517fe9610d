"""Countdown state machine for the timers of one signed-in parent."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from .api import ExpiryDispatcher
from .exceptions import (
    ChildNotFoundError,
    CreationError,
    PersistenceError,
    TimerNotFoundError,
    ValidationError,
)
from .models import Timer, TimerStatus
from .ops import StructuredLogger

if TYPE_CHECKING:  # pragma: no cover
    from .webapp.persistence import DocumentGateway


class TimerEngine:
    """Own the local countdown of every timer a parent has in flight.

    Each active timer gets its own one-second callback on the running
    ``asyncio`` loop, tracked in ``_countdowns`` by timer id.  A callback is
    registered when a timer enters ``active`` and removed whenever it leaves,
    and registration is skipped while one is already pending.  When no loop is
    running the engine does not schedule anything and is advanced through
    :meth:`tick` instead.

    User actions write to the gateway before touching local state, so a failed
    write leaves the engine unchanged and the :class:`PersistenceError` reaches
    the caller.  Tick-driven writes (completion and checkpoints) are applied
    locally first; failures are queued and replayed by :meth:`sync`.
    """

    def __init__(
        self,
        gateway: "DocumentGateway",
        parent_id: str,
        *,
        interval: float = 1.0,
        checkpoint_every: int = 0,
        persist_remaining_on_pause: bool = True,
        logger: StructuredLogger | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.parent_id = parent_id
        self.interval = interval
        self.checkpoint_every = checkpoint_every
        self.persist_remaining_on_pause = persist_remaining_on_pause
        self._gateway = gateway
        self._logger = logger or StructuredLogger(component="engine")
        self._loop = loop
        self._clock = clock
        self._timers: Dict[str, Timer] = {}
        self._countdowns: Dict[str, Tuple[asyncio.AbstractEventLoop, asyncio.TimerHandle]] = {}
        self._ticks_since_checkpoint: Dict[str, int] = {}
        self._pending: Dict[str, Dict[str, Any]] = {}
        self._expiry = ExpiryDispatcher(self._logger)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def load(self) -> List[Timer]:
        """Merge the stored timers into the engine and arm the active ones.

        Timers already counting locally keep their local ``remaining_time``;
        timers with unsynchronised writes keep their whole local state.
        """

        stored = self._gateway.get_timers(self.parent_id)
        seen = set()
        for record in stored:
            seen.add(record.id)
            local = self._timers.get(record.id)
            if local is not None:
                if record.id in self._pending:
                    continue
                if local.in_flight and local.status is record.status:
                    continue
            self._timers[record.id] = record
        for timer_id in [timer_id for timer_id in self._timers if timer_id not in seen]:
            if timer_id in self._pending:
                continue
            self._forget(timer_id)
        for timer in self._timers.values():
            if timer.status is TimerStatus.ACTIVE:
                self._arm(timer.id)
            else:
                self._disarm(timer.id)
        self._logger.log("timers_loaded", parent=self.parent_id, count=len(self._timers))
        return self.timers()

    refresh = load

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, timer_id: str) -> Timer:
        try:
            return self._timers[timer_id]
        except KeyError as exc:
            raise TimerNotFoundError(f"Timer '{timer_id}' does not exist.") from exc

    def timers(self) -> List[Timer]:
        return sorted(self._timers.values(), key=lambda timer: timer.created_at)

    def in_flight(self) -> List[Timer]:
        return [timer for timer in self.timers() if timer.in_flight]

    def is_counting(self, timer_id: str) -> bool:
        return timer_id in self._countdowns

    def pending_sync(self) -> Dict[str, Dict[str, Any]]:
        return {timer_id: dict(fields) for timer_id, fields in self._pending.items()}

    def add_expiry_listener(self, listener: Callable[[Timer], None]) -> None:
        self._expiry.register(listener)

    def remove_expiry_listener(self, listener: Callable[[Timer], None]) -> None:
        self._expiry.unregister(listener)

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------
    def start(self, child_id: str, duration_minutes: int) -> Timer:
        if not child_id or duration_minutes is None:
            raise ValidationError("Please select a child and set a duration.")
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
            raise ValidationError("Duration must be a whole number of minutes.")
        if duration_minutes < 1:
            raise ValidationError("Duration must be at least 1 minute.")
        child = self._gateway.get_child(child_id)
        if child is None or child.parent_id != self.parent_id:
            raise ChildNotFoundError(f"Child '{child_id}' does not exist.")
        try:
            timer = self._gateway.add_timer(
                self.parent_id,
                child_id,
                duration_minutes,
                duration_minutes * 60,
                status=TimerStatus.ACTIVE,
                start_time=self._clock(),
            )
        except PersistenceError as exc:
            self._logger.error("timer_start_failed", parent=self.parent_id, child=child_id, error=str(exc))
            raise CreationError("Could not start the timer. Please try again.") from exc
        self._timers[timer.id] = timer
        self._arm(timer.id)
        self._logger.log("timer_started", timer=timer.id, child=child_id, minutes=duration_minutes)
        return timer

    def pause(self, timer_id: str) -> Timer:
        timer = self.get(timer_id)
        if timer.status is TimerStatus.PAUSED:
            return timer
        self._require_in_flight(timer, "paused")
        fields: Dict[str, Any] = {"status": TimerStatus.PAUSED}
        if self.persist_remaining_on_pause:
            fields["remaining_time"] = timer.remaining_time
        self._write_now(timer, fields)
        self._disarm(timer_id)
        timer.status = TimerStatus.PAUSED
        self._logger.log("timer_paused", timer=timer_id, remaining=timer.remaining_time)
        return timer

    def resume(self, timer_id: str) -> Timer:
        timer = self.get(timer_id)
        if timer.status is TimerStatus.ACTIVE:
            return timer
        self._require_in_flight(timer, "resumed")
        self._write_now(timer, {"status": TimerStatus.ACTIVE})
        timer.status = TimerStatus.ACTIVE
        self._arm(timer_id)
        self._logger.log("timer_resumed", timer=timer_id, remaining=timer.remaining_time)
        return timer

    def toggle(self, timer_id: str) -> Timer:
        timer = self.get(timer_id)
        if timer.status is TimerStatus.ACTIVE:
            return self.pause(timer_id)
        return self.resume(timer_id)

    def cancel(self, timer_id: str) -> Timer:
        """Delete the timer outright and stop its countdown."""

        timer = self.get(timer_id)
        self._require_in_flight(timer, "cancelled")
        self._gateway.delete_timer(timer_id)
        self._forget(timer_id)
        timer.status = TimerStatus.CANCELLED
        self._logger.log("timer_cancelled", timer=timer_id, remaining=timer.remaining_time)
        return timer

    # ------------------------------------------------------------------
    # Countdown
    # ------------------------------------------------------------------
    def tick(self, timer_id: str) -> bool:
        """Advance one active timer by a second; return ``True`` once it completes."""

        timer = self._timers.get(timer_id)
        if timer is None or timer.status is not TimerStatus.ACTIVE:
            return False
        if timer.remaining_time > 1:
            timer.remaining_time -= 1
            self._maybe_checkpoint(timer)
            return False
        self._disarm(timer_id)
        self._ticks_since_checkpoint.pop(timer_id, None)
        now = self._clock()
        timer.remaining_time = 0
        timer.status = TimerStatus.COMPLETED
        timer.end_time = now
        timer.updated_at = now
        self.on_expire(timer)
        return True

    def tick_all(self) -> List[Timer]:
        completed = []
        for timer in self.timers():
            if self.tick(timer.id):
                completed.append(timer)
        return completed

    def on_expire(self, timer: Timer) -> None:
        """Persist the completed transition and notify expiry listeners.

        Listeners are where an activity suggestion would be attached; the
        engine itself never picks one.
        """

        self._write_deferred(
            timer.id,
            status=TimerStatus.COMPLETED,
            remaining_time=0,
            end_time=timer.end_time,
        )
        self._logger.log("timer_completed", timer=timer.id, child=timer.child_id)
        self._expiry.dispatch(timer)

    def sync(self) -> int:
        """Replay queued writes; return how many reached the document store."""

        replayed = 0
        for timer_id, fields in list(self._pending.items()):
            try:
                self._gateway.update_timer(timer_id, **fields)
            except TimerNotFoundError:
                self._pending.pop(timer_id, None)
                self._logger.log("sync_dropped", timer=timer_id)
                continue
            except PersistenceError as exc:
                self._logger.error("sync_failed", timer=timer_id, error=str(exc))
                continue
            self._pending.pop(timer_id, None)
            replayed += 1
        if replayed:
            self._logger.log("sync_replayed", count=replayed)
        return replayed

    def shutdown(self) -> None:
        for timer_id in list(self._countdowns):
            self._disarm(timer_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _require_in_flight(self, timer: Timer, action: str) -> None:
        if not timer.in_flight:
            raise ValidationError(f"A {timer.status.value} timer cannot be {action}.")

    def _write_now(self, timer: Timer, fields: Dict[str, Any]) -> None:
        try:
            stored = self._gateway.update_timer(timer.id, **fields)
        except TimerNotFoundError:
            self._forget(timer.id)
            raise
        timer.updated_at = stored.updated_at
        pending = self._pending.get(timer.id)
        if pending is not None:
            for key in fields:
                pending.pop(key, None)
            if not pending:
                self._pending.pop(timer.id, None)

    def _write_deferred(self, timer_id: str, **fields: Any) -> bool:
        # Runs inside loop callbacks: the gateway call is a blocking local
        # SQLite write and holds the event loop until it returns.
        merged = {**self._pending.pop(timer_id, {}), **fields}
        try:
            self._gateway.update_timer(timer_id, **merged)
        except TimerNotFoundError:
            self._logger.log("timer_missing", timer=timer_id)
            return False
        except PersistenceError as exc:
            self._pending[timer_id] = merged
            self._logger.error("sync_deferred", timer=timer_id, fields=sorted(merged), error=str(exc))
            return False
        return True

    def _maybe_checkpoint(self, timer: Timer) -> None:
        if self.checkpoint_every <= 0:
            return
        count = self._ticks_since_checkpoint.get(timer.id, 0) + 1
        if count < self.checkpoint_every:
            self._ticks_since_checkpoint[timer.id] = count
            return
        self._ticks_since_checkpoint[timer.id] = 0
        self._write_deferred(timer.id, remaining_time=timer.remaining_time)

    def _resolve_loop(self) -> Optional[asyncio.AbstractEventLoop]:
        if self._loop is not None:
            return self._loop
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    def _arm(self, timer_id: str) -> None:
        armed = self._countdowns.get(timer_id)
        if armed is not None:
            if not armed[0].is_closed():
                return
            # The loop that owned this countdown is gone.
            del self._countdowns[timer_id]
        loop = self._resolve_loop()
        if loop is None:
            return
        handle = loop.call_later(self.interval, self._on_interval, timer_id)
        self._countdowns[timer_id] = (loop, handle)

    def _disarm(self, timer_id: str) -> None:
        armed = self._countdowns.pop(timer_id, None)
        if armed is not None:
            armed[1].cancel()

    def _on_interval(self, timer_id: str) -> None:
        self._countdowns.pop(timer_id, None)
        if not self.tick(timer_id):
            timer = self._timers.get(timer_id)
            if timer is not None and timer.status is TimerStatus.ACTIVE:
                self._arm(timer_id)

    def _forget(self, timer_id: str) -> None:
        self._disarm(timer_id)
        self._timers.pop(timer_id, None)
        self._pending.pop(timer_id, None)
        self._ticks_since_checkpoint.pop(timer_id, None)


class EngineRegistry:
    """One :class:`TimerEngine` per signed-in parent for the web process."""

    def __init__(self, gateway: "DocumentGateway", **engine_options: Any) -> None:
        self._gateway = gateway
        self._options = engine_options
        self._engines: Dict[str, TimerEngine] = {}

    def for_parent(self, parent_id: str) -> TimerEngine:
        engine = self._engines.get(parent_id)
        if engine is None:
            engine = TimerEngine(self._gateway, parent_id, **self._options)
            engine.load()
            self._engines[parent_id] = engine
        return engine

    def discard(self, parent_id: str) -> None:
        engine = self._engines.pop(parent_id, None)
        if engine is not None:
            engine.shutdown()

    def shutdown(self) -> None:
        for parent_id in list(self._engines):
            self.discard(parent_id)

    def __contains__(self, parent_id: object) -> bool:
        return parent_id in self._engines


__all__ = ["EngineRegistry", "TimerEngine"]
