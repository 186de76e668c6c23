"""
Activity Core
Hierarchy Validator — type nesting rules + cycle detection.

Used by the activity service on create and on reparent. Never writes.

Usage:
    from activity_core.services.hierarchy_validator import validate_create
    validate_create(ActivityType.TASK, parent_id)
"""

from __future__ import annotations

import logging

from activity_core.core.exceptions import CycleError, HierarchyError, NotFoundError
from activity_core.models import db
from activity_core.models.activity import Activity, ActivityType

logger = logging.getLogger(__name__)


class _Unset:
    """Marker for "parent_id not supplied" (distinct from None = move to root)."""

    def __repr__(self):
        return "UNSET"


UNSET = _Unset()

T = ActivityType

HIERARCHY_RULES: dict[ActivityType, frozenset[ActivityType]] = {
    T.AREA: frozenset({T.BUSINESS, T.DIRECTION, T.PROJECT}),
    T.BUSINESS: frozenset({T.DIRECTION, T.PROJECT}),
    T.DIRECTION: frozenset({T.PROJECT, T.INITIATIVE}),
    T.PROJECT: frozenset({T.TASK, T.PROJECT, T.MILESTONE}),
    T.INITIATIVE: frozenset({T.PROJECT, T.TASK}),
    T.TASK: frozenset(),
    T.MILESTONE: frozenset(),
    T.HABIT: frozenset({T.TASK}),
    T.LEARNING: frozenset({T.TASK}),
    T.EVENT_SERIES: frozenset({T.TASK}),
}

def _check_rules_cover(rules) -> None:
    missing = set(ActivityType) - set(rules)
    if missing:
        raise RuntimeError(
            f"HIERARCHY_RULES missing activity types: {sorted(t.value for t in missing)}"
        )


_check_rules_cover(HIERARCHY_RULES)


# ── Pure helpers ─────────────────────────────────────────────────────────────

def allowed_children(parent_type) -> frozenset[ActivityType]:
    return HIERARCHY_RULES[ActivityType(parent_type)]


def can_be_child_of(child_type, parent_type) -> bool:
    return ActivityType(child_type) in allowed_children(parent_type)


def _describe_allowed(parent_type) -> str:
    allowed = allowed_children(parent_type)
    if not allowed:
        return "none (leaf node)"
    # Rule-table order for stable messages
    return ", ".join(t.value for t in ActivityType if t in allowed)


def check_type_hierarchy(child_type, parent_type) -> None:
    """Raise HierarchyError if child_type may not sit directly under parent_type."""
    if not can_be_child_of(child_type, parent_type):
        child = ActivityType(child_type).value
        parent = ActivityType(parent_type).value
        raise HierarchyError(
            f"Cannot create {child} under {parent}. "
            f"Allowed children: {_describe_allowed(parent_type)}",
            details={"child_type": child, "parent_type": parent},
        )


def check_no_cycle(activity_id: str, parent: Activity) -> None:
    """Reject moving ``activity_id`` under ``parent`` if parent descends from it.

    Compares whole path segments, so id "abc" never matches segment "xabc".
    """
    if activity_id == parent.id or activity_id in parent.ancestor_ids:
        raise CycleError(
            f"Cannot move activity '{activity_id}' under '{parent.id}': "
            "it would create a cycle (the target is a descendant of the source)",
            details={"activity_id": activity_id, "parent_id": parent.id},
        )


# ── Validation entry points ──────────────────────────────────────────────────

def _load_parent(parent_id: str) -> Activity:
    parent = db.session.get(Activity, parent_id)
    if parent is None or parent.is_deleted:
        raise NotFoundError(resource="Parent activity", resource_id=parent_id)
    return parent


def validate_create(activity_type, parent_id: str | None) -> Activity | None:
    """Validate a new activity's placement. Returns the loaded parent (or None for root)."""
    ActivityType(activity_type)
    if not parent_id:
        return None
    parent = _load_parent(parent_id)
    check_type_hierarchy(activity_type, parent.activity_type)
    return parent


def validate_update(activity_id: str, activity_type, new_parent_id=UNSET) -> Activity | None:
    """Validate a reparent.

    ``UNSET`` means the parent is not changing; ``None`` moves the activity
    to the root and is always valid. Returns the new parent when one is set.
    """
    if new_parent_id is UNSET or new_parent_id is None:
        return None

    if new_parent_id == activity_id:
        raise CycleError(
            "Activity cannot be its own parent",
            details={"activity_id": activity_id},
        )

    parent = _load_parent(new_parent_id)
    check_type_hierarchy(activity_type, parent.activity_type)
    check_no_cycle(activity_id, parent)
    return parent
