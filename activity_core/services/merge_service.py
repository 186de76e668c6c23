"""
Activity Core
Merge Engine — consolidates duplicate activities into one keeper.

    merge_activities(keep_id, merge_ids)
        1. children of each merged activity move under the keeper (path cascade)
        2. members move to the keeper unless (keeper, entity, role) already exists
        3. commitments are reassigned to the keeper
        4. merged activities are archived and soft-deleted

All four steps share one transaction: commit at the end, rollback and
re-raise on any failure. Every row involved has its version checked up front,
so a concurrent merge or reparent touching the same activities fails with
ConflictError instead of interleaving.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import sqlalchemy as sa

from activity_core.core.exceptions import NotFoundError, ValidationError
from activity_core.models import db
from activity_core.models.activity import Activity, ActivityMember, ActivityStatus
from activity_core.models.commitment import Commitment
from activity_core.services.activity_service import bump_version, rewrite_subtree_paths
from activity_core.services.duplicate_detector import find_duplicate_groups

logger = logging.getLogger(__name__)


def _as_utc(value: datetime | None) -> datetime:
    # SQLite hands back naive datetimes
    if value is None:
        return datetime.max.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Transaction steps ────────────────────────────────────────────────────────


def _move_children(keep: Activity, merged: Activity) -> int:
    """Reparent the merged activity's live direct children and rewrite their subtrees.

    Soft-deleted rows stay under the archived activity untouched.
    """
    result = db.session.execute(
        sa.update(Activity)
        .where(Activity.parent_id == merged.id, Activity.live())
        .values(parent_id=keep.id)
        .execution_options(synchronize_session="fetch")
    )
    moved = result.rowcount
    if moved:
        rewrite_subtree_paths(merged.full_path, keep.full_path, keep.depth - merged.depth,
                              live_only=True)
    return moved


def _move_members(keep_id: str, merge_ids: list[str]) -> tuple[int, int]:
    """Move memberships to the keeper, skipping (entity, role) pairs it already has.

    Skipped rows stay on the archived activity.
    """
    taken = {
        (m.entity_id, m.role)
        for m in ActivityMember.query.filter_by(activity_id=keep_id).all()
    }
    moved = skipped = 0
    candidates = (
        ActivityMember.query
        .filter(ActivityMember.activity_id.in_(merge_ids))
        .order_by(ActivityMember.joined_at.asc(), ActivityMember.id.asc())
        .all()
    )
    for member in candidates:
        key = (member.entity_id, member.role)
        if key in taken:
            skipped += 1
            continue
        member.activity_id = keep_id
        taken.add(key)
        moved += 1
    db.session.flush()
    return moved, skipped


def _reassign_commitments(keep_id: str, merge_ids: list[str]) -> int:
    result = db.session.execute(
        sa.update(Commitment)
        .where(Commitment.activity_id.in_(merge_ids), Commitment.live())
        .values(activity_id=keep_id)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount


def _archive(merge_ids: list[str]) -> None:
    now = datetime.now(timezone.utc)
    for activity in Activity.query.filter(Activity.id.in_(merge_ids)).all():
        activity.status = ActivityStatus.ARCHIVED.value
        activity.soft_delete(now)
    db.session.flush()


# ── Public API ───────────────────────────────────────────────────────────────


def merge_activities(keep_id: str, merge_ids: list[str]) -> dict:
    """Merge ``merge_ids`` into ``keep_id`` atomically.

    Raises:
        ValidationError: keep_id listed in merge_ids, empty merge list, or a
            merged activity is an ancestor of the keeper.
        NotFoundError: keeper or any merge id missing or already deleted.
        ConflictError: a row changed concurrently (version mismatch).

    Returns:
        Summary dict with counts of moved children, members and commitments.
    """
    merge_ids = list(dict.fromkeys(merge_ids or []))
    if not merge_ids:
        raise ValidationError("merge_ids must not be empty")
    if keep_id in merge_ids:
        raise ValidationError("keep_id must not appear in merge_ids",
                              details={"keep_id": keep_id})

    keep = Activity.query_active().filter_by(id=keep_id).first()
    if keep is None:
        raise NotFoundError(resource="Activity", resource_id=keep_id)

    merging = Activity.query_active().filter(Activity.id.in_(merge_ids)).all()
    missing = sorted(set(merge_ids) - {a.id for a in merging})
    if missing:
        raise NotFoundError(resource="Activity", resource_id=missing)

    ancestors = set(keep.ancestor_ids)
    nested = [a.id for a in merging if a.id in ancestors]
    if nested:
        raise ValidationError(
            "Cannot merge an ancestor of the keeper into it",
            details={"keep_id": keep_id, "ancestor_ids": nested},
        )

    seen_versions = {a.id: a.version for a in [keep, *merging]}
    summary = {
        "kept_id": keep_id,
        "merged_ids": merge_ids,
        "children_moved": 0,
        "members_moved": 0,
        "members_skipped": 0,
        "commitments_moved": 0,
    }

    try:
        for activity in [keep, *merging]:
            bump_version(activity, seen_versions[activity.id])

        for merged_id in merge_ids:
            # Re-read: an earlier iteration may have rewritten this row's path
            merged = db.session.get(Activity, merged_id)
            summary["children_moved"] += _move_children(keep, merged)

        moved, skipped = _move_members(keep_id, merge_ids)
        summary["members_moved"] = moved
        summary["members_skipped"] = skipped
        summary["commitments_moved"] = _reassign_commitments(keep_id, merge_ids)
        _archive(merge_ids)

        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        logger.error("Merge into %s failed, rolled back: %s", keep_id, exc,
                     extra={"activity_id": keep_id, "merged_ids": merge_ids})
        raise

    logger.info(
        "Merged %d activities into %s (children=%d members=%d commitments=%d)",
        len(merge_ids), keep_id, summary["children_moved"],
        summary["members_moved"], summary["commitments_moved"],
        extra={"activity_id": keep_id, "merged_ids": merge_ids},
    )
    return summary


def select_keeper(activity_ids: list[str]) -> tuple[str, list[str]]:
    """Pick the survivor of a duplicate group.

    Ranking: most live direct children, then most active members, then
    oldest ``created_at`` (id as final tie-break for determinism).

    Returns:
        (keep_id, merge_ids)
    """
    activities = Activity.query.filter(Activity.id.in_(activity_ids)).all()
    if not activities:
        raise NotFoundError(resource="Activity", resource_id=list(activity_ids))

    child_counts = dict(
        db.session.query(Activity.parent_id, sa.func.count(Activity.id))
        .filter(Activity.parent_id.in_(activity_ids), Activity.live())
        .group_by(Activity.parent_id)
        .all()
    )
    member_counts = dict(
        db.session.query(ActivityMember.activity_id, sa.func.count(ActivityMember.id))
        .filter(ActivityMember.activity_id.in_(activity_ids),
                ActivityMember.is_active.is_(True))
        .group_by(ActivityMember.activity_id)
        .all()
    )

    ranked = sorted(
        activities,
        key=lambda a: (
            -child_counts.get(a.id, 0),
            -member_counts.get(a.id, 0),
            _as_utc(a.created_at),
            a.id,
        ),
    )
    return ranked[0].id, [a.id for a in ranked[1:]]


def auto_merge_all_duplicates() -> dict:
    """Merge every duplicate group into its selected keeper.

    A failing group is recorded in ``errors`` and does not stop the others.
    """
    results = {"merged_groups": 0, "total_merged": 0, "errors": [], "details": []}

    for group in find_duplicate_groups():
        try:
            keep_id, merge_ids = select_keeper(group.activity_ids)
            merge_activities(keep_id, merge_ids)
            keeper = db.session.get(Activity, keep_id)
            results["merged_groups"] += 1
            results["total_merged"] += len(merge_ids)
            results["details"].append({
                "kept_id": keep_id,
                "kept_name": keeper.name if keeper else group.name,
                "merged_ids": merge_ids,
            })
        except Exception as exc:
            logger.warning("Auto-merge failed for group '%s' (%s): %s",
                           group.name, group.type, exc)
            results["errors"].append({"group": group.name, "error": str(exc)})

    logger.info("Auto-merge: groups=%d merged=%d errors=%d",
                results["merged_groups"], results["total_merged"], len(results["errors"]))
    return results
