"""
Activity Core
Activity Hierarchy Store — CRUD + depth/path maintenance for the activity tree.

This module is the only writer of ``parent_id``, ``depth`` and
``materialized_path``. The merge engine reuses ``rewrite_subtree_paths`` and
``bump_version`` inside its own transaction; everything else goes through
``create_activity`` / ``update_activity``.

Transaction policy: public write operations commit on success and roll back
and re-raise on any failure. Helpers prefixed ``_`` and the two shared
helpers above only flush.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import sqlalchemy as sa

from activity_core.core.exceptions import ConflictError, NotFoundError, ValidationError
from activity_core.models import db
from activity_core.models.activity import (
    PATH_SEPARATOR,
    Activity,
    ActivityContext,
    ActivityMember,
    ActivityStatus,
    ActivityType,
    MemberRole,
    Priority,
)
from activity_core.services import hierarchy_validator
from activity_core.services.hierarchy_validator import UNSET

logger = logging.getLogger(__name__)

_DT_FIELDS = {"deadline", "start_date", "end_date"}

_UPDATABLE = (
    "name", "description",
    "owner_entity_id", "client_entity_id",
    "deadline", "start_date", "end_date", "recurrence_rule",
)


def _utcnow():
    return datetime.now(timezone.utc)


def _parse_dt(val):
    """Accept a datetime, an ISO string or None."""
    if val is None or isinstance(val, datetime):
        return val
    val = str(val).strip()
    if not val:
        return None
    return datetime.fromisoformat(val)


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so ``value`` matches literally (escape char ``\\``)."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _enum_value(enum_cls, value, field: str) -> str:
    try:
        return enum_cls(value).value
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value!r}", details={field: "invalid"})


def _normalize_tags(tags) -> list[str]:
    # Set semantics, first occurrence order
    return list(dict.fromkeys(str(t).strip() for t in (tags or []) if str(t).strip()))


# ── Reads ────────────────────────────────────────────────────────────────────


def get_activity(activity_id: str, include_deleted: bool = False) -> Activity:
    activity = db.session.get(Activity, activity_id)
    if activity is None or (activity.is_deleted and not include_deleted):
        raise NotFoundError(resource="Activity", resource_id=activity_id)
    return activity


def list_activities(
    activity_type: str | None = None,
    status: str | None = None,
    parent_id=UNSET,
    owner_entity_id: str | None = None,
    include_deleted: bool = False,
) -> list[Activity]:
    """Return activities matching the given filters, oldest first.

    ``parent_id=None`` selects roots; leaving it unset applies no filter.
    """
    q = Activity.query if include_deleted else Activity.query_active()
    if activity_type:
        q = q.filter(Activity.activity_type == _enum_value(ActivityType, activity_type, "activity_type"))
    if status:
        q = q.filter(Activity.status == _enum_value(ActivityStatus, status, "status"))
    if parent_id is not UNSET:
        q = q.filter(Activity.parent_id.is_(None) if parent_id is None
                     else Activity.parent_id == parent_id)
    if owner_entity_id:
        q = q.filter(Activity.owner_entity_id == owner_entity_id)
    return q.order_by(Activity.created_at.asc(), Activity.id.asc()).all()


def get_children(activity_id: str) -> list[Activity]:
    return list_activities(parent_id=activity_id)


def get_descendants(activity: Activity) -> list[Activity]:
    """All non-deleted descendants, found by path prefix."""
    prefix = activity.full_path
    return (
        Activity.query_active()
        .filter(sa.or_(
            Activity.materialized_path == prefix,
            Activity.materialized_path.like(escape_like(prefix + PATH_SEPARATOR) + "%", escape="\\"),
        ))
        .order_by(Activity.depth.asc())
        .all()
    )


# ── Path maintenance (shared with the merge engine) ──────────────────────────


def _placement(parent: Activity | None) -> tuple[int, str | None]:
    if parent is None:
        return 0, None
    return parent.depth + 1, parent.full_path


def rewrite_subtree_paths(old_prefix: str, new_prefix: str, depth_delta: int,
                          live_only: bool = False) -> int:
    """Move every row under ``old_prefix`` to ``new_prefix`` in one UPDATE.

    Matches rows whose path equals ``old_prefix`` (direct children of the
    moved node) or starts with ``old_prefix + "/"``. Depth is shifted by
    ``depth_delta``. With ``live_only`` soft-deleted rows keep their old
    path. Flushes pending changes first; does not commit.

    Returns:
        Number of rows rewritten.
    """
    db.session.flush()
    in_subtree = sa.or_(
        Activity.materialized_path == old_prefix,
        Activity.materialized_path.like(
            escape_like(old_prefix + PATH_SEPARATOR) + "%", escape="\\",
        ),
    )
    if live_only:
        in_subtree = sa.and_(in_subtree, Activity.live())
    stmt = (
        sa.update(Activity)
        .where(in_subtree)
        .values(
            materialized_path=(
                sa.literal(new_prefix, type_=sa.Text)
                + sa.func.substr(Activity.materialized_path, len(old_prefix) + 1, type_=sa.Text)
            ),
            depth=Activity.depth + depth_delta,
            version=Activity.version + 1,
            updated_at=_utcnow(),
        )
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)
    return result.rowcount


def bump_version(activity: Activity, expected_version: int) -> None:
    """Conditionally increment ``activity.version``.

    Raises ConflictError when another transaction changed the row since
    ``expected_version`` was read.
    """
    db.session.flush()
    result = db.session.execute(
        sa.update(Activity)
        .where(Activity.id == activity.id, Activity.version == expected_version)
        .values(version=expected_version + 1)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        raise ConflictError(resource="Activity", field="version", value=activity.id)


def _move(activity: Activity, new_parent: Activity | None) -> int:
    """Reparent ``activity`` and cascade its subtree. Flush only."""
    expected_version = activity.version
    old_full = activity.full_path
    old_depth = activity.depth

    depth, path = _placement(new_parent)
    activity.parent_id = new_parent.id if new_parent else None
    activity.depth = depth
    activity.materialized_path = path
    bump_version(activity, expected_version)

    moved = rewrite_subtree_paths(old_full, activity.full_path, depth - old_depth)
    logger.debug(
        "Activity %s moved under %s, %d descendants rewritten",
        activity.id, activity.parent_id, moved,
    )
    return moved


# ── Writes ───────────────────────────────────────────────────────────────────


def create_activity(data: dict) -> Activity:
    """Create an activity under an optional parent.

    Args:
        data: Input dict with at least ``name`` and ``activity_type``.
              ``parent_id`` places the activity; omitted or None = root.

    Returns:
        The persisted Activity.
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Activity name is required", details={"name": "required"})
    try:
        activity_type = ActivityType(data.get("activity_type"))
    except ValueError:
        raise ValidationError(
            f"Unknown activity type: {data.get('activity_type')!r}",
            details={"activity_type": "invalid"},
        )

    parent = hierarchy_validator.validate_create(activity_type, data.get("parent_id"))
    depth, path = _placement(parent)

    progress = int(data.get("progress", 0))
    if not 0 <= progress <= 100:
        raise ValidationError("Progress must be between 0 and 100", details={"progress": progress})

    activity = Activity(
        name=name,
        activity_type=activity_type.value,
        description=data.get("description"),
        status=_enum_value(ActivityStatus, data.get("status", ActivityStatus.ACTIVE), "status"),
        priority=_enum_value(Priority, data.get("priority", Priority.MEDIUM), "priority"),
        context=_enum_value(ActivityContext, data.get("context", ActivityContext.ANY), "context"),
        parent_id=parent.id if parent else None,
        depth=depth,
        materialized_path=path,
        owner_entity_id=data.get("owner_entity_id"),
        client_entity_id=data.get("client_entity_id"),
        deadline=_parse_dt(data.get("deadline")),
        start_date=_parse_dt(data.get("start_date")),
        end_date=_parse_dt(data.get("end_date")),
        recurrence_rule=data.get("recurrence_rule"),
        metadata_json=dict(data.get("metadata") or {}),
        tags=_normalize_tags(data.get("tags")),
        progress=progress,
        last_activity_at=_utcnow(),
    )
    if data.get("id"):
        activity.id = data["id"]
    if data.get("embedding") is not None:
        activity.embedding = data["embedding"]

    try:
        db.session.add(activity)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Activity created id=%s type=%s depth=%d",
                activity.id, activity.activity_type, activity.depth,
                extra={"activity_id": activity.id})
    return activity


def update_activity(activity_id: str, data: dict) -> Activity:
    """Update fields and, when ``parent_id`` is present, reparent with cascade.

    ``metadata`` is merged key-wise into the existing map. An optional
    ``version`` in ``data`` must match the stored one.

    The activity row and every rewritten descendant commit together or
    not at all.
    """
    activity = get_activity(activity_id)

    if "version" in data and data["version"] != activity.version:
        raise ConflictError(resource="Activity", field="version", value=activity_id)

    new_parent_id = data.get("parent_id", UNSET)
    if new_parent_id is not UNSET and new_parent_id == activity.parent_id:
        new_parent_id = UNSET
    new_parent = hierarchy_validator.validate_update(
        activity.id, activity.activity_type, new_parent_id,
    )

    try:
        for field in _UPDATABLE:
            if field in data:
                val = _parse_dt(data[field]) if field in _DT_FIELDS else data[field]
                setattr(activity, field, val)
        if "status" in data:
            activity.status = _enum_value(ActivityStatus, data["status"], "status")
        if "priority" in data:
            activity.priority = (None if data["priority"] is None
                                 else _enum_value(Priority, data["priority"], "priority"))
        if "context" in data:
            activity.context = (None if data["context"] is None
                                else _enum_value(ActivityContext, data["context"], "context"))
        if "progress" in data:
            progress = int(data["progress"])
            if not 0 <= progress <= 100:
                raise ValidationError("Progress must be between 0 and 100",
                                      details={"progress": progress})
            activity.progress = progress
        if "tags" in data:
            activity.tags = _normalize_tags(data["tags"])
        if "metadata" in data:
            activity.metadata_json = {**(activity.metadata_json or {}), **(data["metadata"] or {})}
        if "embedding" in data:
            activity.embedding = data["embedding"]
        activity.last_activity_at = _utcnow()

        if new_parent_id is not UNSET:
            _move(activity, new_parent)

        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.warning("Activity update rolled back id=%s", activity_id,
                       extra={"activity_id": activity_id})
        raise

    logger.info("Activity updated id=%s", activity.id, extra={"activity_id": activity.id})
    return activity


def soft_delete_activity(activity_id: str) -> Activity:
    activity = get_activity(activity_id)
    activity.soft_delete()
    db.session.commit()
    logger.info("Activity soft-deleted id=%s", activity_id)
    return activity


# ── Status transitions ───────────────────────────────────────────────────────


def _set_status(activity_id: str, status: ActivityStatus, **fields) -> Activity:
    activity = get_activity(activity_id)
    activity.status = status.value
    for key, val in fields.items():
        setattr(activity, key, val)
    activity.last_activity_at = _utcnow()
    db.session.commit()
    logger.info("Activity %s → %s", activity_id, status.value)
    return activity


def complete_activity(activity_id: str) -> Activity:
    return _set_status(activity_id, ActivityStatus.COMPLETED, end_date=_utcnow(), progress=100)


def cancel_activity(activity_id: str) -> Activity:
    return _set_status(activity_id, ActivityStatus.CANCELLED)


def pause_activity(activity_id: str) -> Activity:
    return _set_status(activity_id, ActivityStatus.PAUSED)


def resume_activity(activity_id: str) -> Activity:
    activity = get_activity(activity_id)
    if activity.status != ActivityStatus.PAUSED.value:
        raise ValidationError(
            f"Only paused activities can be resumed (current status: {activity.status})",
        )
    return _set_status(activity_id, ActivityStatus.ACTIVE)


def archive_activity(activity_id: str) -> Activity:
    return _set_status(activity_id, ActivityStatus.ARCHIVED)


# ── Members ──────────────────────────────────────────────────────────────────


def add_member(activity_id: str, entity_id: str, role: str = MemberRole.MEMBER.value,
               notes: str | None = None) -> ActivityMember:
    """Attach an entity to an activity. The (activity, entity, role) triple is unique."""
    get_activity(activity_id)
    role = _enum_value(MemberRole, role, "role")

    existing = ActivityMember.query.filter_by(
        activity_id=activity_id, entity_id=entity_id, role=role,
    ).first()
    if existing:
        if existing.is_active:
            raise ConflictError(resource="ActivityMember", field="entity_id/role",
                                value=f"{entity_id}/{role}")
        existing.is_active = True
        existing.left_at = None
        existing.joined_at = _utcnow()
        member = existing
    else:
        member = ActivityMember(activity_id=activity_id, entity_id=entity_id,
                                role=role, notes=notes)
        db.session.add(member)
    db.session.commit()
    return member


def list_members(activity_id: str, include_inactive: bool = False) -> list[ActivityMember]:
    q = ActivityMember.query.filter_by(activity_id=activity_id)
    if not include_inactive:
        q = q.filter_by(is_active=True)
    return q.order_by(ActivityMember.joined_at.asc()).all()


def remove_member(activity_id: str, member_id: str) -> ActivityMember:
    """Deactivate a membership (kept for history)."""
    member = ActivityMember.query.filter_by(id=member_id, activity_id=activity_id).first()
    if member is None:
        raise NotFoundError(resource="ActivityMember", resource_id=member_id)
    member.is_active = False
    member.left_at = _utcnow()
    db.session.commit()
    return member
