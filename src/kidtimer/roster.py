"""Children roster, activity catalog and activity journal for a parent."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

from .exceptions import ActivityNotFoundError, ChildNotFoundError, ValidationError
from .models import ACTIVITY_CATEGORIES, Activity, ActivityLog, Child

if TYPE_CHECKING:  # pragma: no cover
    from .webapp.persistence import DocumentGateway


def parse_age(raw: object) -> Optional[int]:
    """Turn form input into an optional non-negative age."""

    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ValidationError("Age must be a whole number.")
    if isinstance(raw, int):
        value = raw
    else:
        text = str(raw).strip()
        if not text:
            return None
        try:
            value = int(text)
        except ValueError as exc:
            raise ValidationError("Age must be a whole number.") from exc
    if value < 0:
        raise ValidationError("Age cannot be negative.")
    return value


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


class ChildRoster:
    """CRUD for the children a parent manages."""

    def __init__(self, gateway: "DocumentGateway", parent_id: str) -> None:
        self._gateway = gateway
        self.parent_id = parent_id

    def list(self) -> List[Child]:
        return self._gateway.get_children(self.parent_id)

    def get(self, child_id: str) -> Child:
        child = self._gateway.get_child(child_id)
        if child is None or child.parent_id != self.parent_id:
            raise ChildNotFoundError(f"Child '{child_id}' does not exist.")
        return child

    def add(self, name: Optional[str], age: object = None) -> Child:
        clean_name = _clean(name)
        if not clean_name:
            raise ValidationError("Child name is required.")
        return self._gateway.add_child(self.parent_id, clean_name, age=parse_age(age))

    def update(self, child_id: str, name: Optional[str], age: object = None) -> Child:
        clean_name = _clean(name)
        if not clean_name:
            raise ValidationError("Child name is required.")
        self.get(child_id)
        return self._gateway.update_child(child_id, name=clean_name, age=parse_age(age))

    def delete(self, child_id: str) -> None:
        self.get(child_id)
        self._gateway.delete_child(child_id)


class ActivityCatalog:
    """Parent-authored activities plus the read-only curated catalog."""

    def __init__(self, gateway: "DocumentGateway", parent_id: str) -> None:
        self._gateway = gateway
        self.parent_id = parent_id

    def list(self) -> List[Activity]:
        return self._gateway.get_activities(self.parent_id)

    def get(self, activity_id: str) -> Activity:
        activity = self._gateway.get_activity(activity_id)
        if activity is None or (activity.parent_id != self.parent_id and not activity.is_curated):
            raise ActivityNotFoundError(f"Activity '{activity_id}' does not exist.")
        return activity

    def _validated(self, name: Optional[str], category: Optional[str]) -> tuple[str, str]:
        clean_name = _clean(name)
        clean_category = _clean(category)
        if not clean_name or not clean_category:
            raise ValidationError("Activity name and category are required.")
        if clean_category not in ACTIVITY_CATEGORIES:
            raise ValidationError(f"Unknown category '{clean_category}'.")
        return clean_name, clean_category

    def _owned(self, activity_id: str) -> Activity:
        activity = self.get(activity_id)
        if activity.is_curated:
            raise ValidationError("Curated activities cannot be changed.")
        return activity

    def add(self, name: Optional[str], category: Optional[str], description: Optional[str] = "") -> Activity:
        clean_name, clean_category = self._validated(name, category)
        return self._gateway.add_activity(
            self.parent_id,
            clean_name,
            clean_category,
            description=_clean(description),
            is_custom=True,
        )

    def update(
        self,
        activity_id: str,
        name: Optional[str],
        category: Optional[str],
        description: Optional[str] = "",
    ) -> Activity:
        clean_name, clean_category = self._validated(name, category)
        self._owned(activity_id)
        return self._gateway.update_activity(
            activity_id,
            name=clean_name,
            category=clean_category,
            description=_clean(description),
        )

    def delete(self, activity_id: str) -> None:
        self._owned(activity_id)
        self._gateway.delete_activity(activity_id)


class ActivityJournal:
    """Log of activities children actually did."""

    def __init__(self, gateway: "DocumentGateway", parent_id: str) -> None:
        self._gateway = gateway
        self.parent_id = parent_id

    def record(
        self,
        child_id: Optional[str],
        activity_id: Optional[str],
        *,
        timer_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ActivityLog:
        if not child_id or not activity_id:
            raise ValidationError("Please choose a child and an activity.")
        ChildRoster(self._gateway, self.parent_id).get(child_id)
        ActivityCatalog(self._gateway, self.parent_id).get(activity_id)
        return self._gateway.log_activity(
            self.parent_id,
            child_id,
            activity_id,
            timer_id=timer_id or None,
            notes=_clean(notes) or None,
        )

    def recent(self, limit: int = 10) -> List[ActivityLog]:
        return self._gateway.get_activity_logs(self.parent_id)[:limit]


__all__ = ["ActivityCatalog", "ActivityJournal", "ChildRoster", "parse_age"]
