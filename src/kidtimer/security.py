"""Sign-in helpers: the observable current user and login rate limiting."""

from __future__ import annotations

import hmac
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional

from .exceptions import AuthenticationError


@dataclass(frozen=True, slots=True)
class SignedInUser:
    """Identity handed out by the authentication collaborator."""

    uid: str
    email: Optional[str]


Listener = Callable[[Optional[SignedInUser]], None]


class AuthState:
    """Observable "current user" holder.

    Subscribers are called with the new user on sign-in and with ``None`` on
    sign-out, and once immediately with the current value when they subscribe.
    """

    def __init__(self) -> None:
        self._current: Optional[SignedInUser] = None
        self._listeners: List[Listener] = []

    @property
    def current_user(self) -> Optional[SignedInUser]:
        return self._current

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self._current)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def sign_in(self, user: SignedInUser) -> None:
        self._current = user
        self._notify()

    def sign_out(self) -> None:
        if self._current is None:
            return
        self._current = None
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._current)


class AuthManager:
    """Coarse sign-in controls: PIN check and lockout after repeated failures."""

    def __init__(self, access_pin: str, *, max_attempts: int = 5, lockout_minutes: int = 15) -> None:
        self._access_pin = access_pin
        self._max_attempts = max_attempts
        self._lockout_window = timedelta(minutes=lockout_minutes)
        self._login_attempts: Dict[str, Deque[datetime]] = {}

    def verify(self, email: str, pin: str, *, at: Optional[datetime] = None) -> str:
        """Return the normalised email or raise :class:`AuthenticationError`."""

        key = (email or "").strip().lower()
        if not key or "@" not in key:
            raise AuthenticationError("Enter a valid email address.")
        if self.is_locked(key, at=at):
            raise AuthenticationError("Too many failed attempts. Try again later.")
        success = hmac.compare_digest((pin or "").encode("utf-8"), self._access_pin.encode("utf-8"))
        self.record_login_attempt(key, success=success, at=at)
        if not success:
            raise AuthenticationError("Incorrect email or PIN.")
        return key

    def record_login_attempt(self, user_id: str, *, success: bool, at: Optional[datetime] = None) -> bool:
        """Record a login attempt and return whether authentication may proceed."""

        now = at or datetime.utcnow()
        bucket = self._login_attempts.setdefault(user_id, deque())
        self._prune(bucket, now)
        if success:
            bucket.clear()
            return True
        bucket.append(now)
        return len(bucket) < self._max_attempts

    def is_locked(self, user_id: str, *, at: Optional[datetime] = None) -> bool:
        now = at or datetime.utcnow()
        bucket = self._login_attempts.get(user_id)
        if not bucket:
            return False
        self._prune(bucket, now)
        return len(bucket) >= self._max_attempts

    def _prune(self, bucket: Deque[datetime], now: datetime) -> None:
        while bucket and now - bucket[0] > self._lockout_window:
            bucket.popleft()


__all__ = ["AuthManager", "AuthState", "SignedInUser"]
