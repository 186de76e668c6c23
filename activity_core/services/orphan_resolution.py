"""
Activity Core
Orphan Resolver — assigns parentless tasks to a project.

Strategy chain per task (first success wins):
    1. name_containment — a project's normalized name appears in the task name
    2. fuzzy_match      — best Levenshtein match (only when enabled in config)
    3. batch            — a sibling from the same extraction batch already has a parent
    4. single_project   — the owner has exactly one active/draft project
    5. unsorted         — get-or-create the owner's "Unsorted Tasks" project

Tasks that fall through every strategy stay unresolved; nothing is defaulted.
Each assignment goes through activity_service.update_activity so the path
cascade and hierarchy validation apply, and commits on its own.
"""

from __future__ import annotations

import logging

import sqlalchemy as sa
from flask import current_app
from sqlalchemy.orm import aliased

from activity_core.models.activity import Activity, ActivityStatus, ActivityType
from activity_core.services import activity_service
from activity_core.services.similarity import find_best_match, normalize_name

logger = logging.getLogger(__name__)

BATCH_METADATA_KEY = "draftBatchId"

METHOD_NAME_CONTAINMENT = "name_containment"
METHOD_FUZZY_MATCH = "fuzzy_match"
METHOD_BATCH = "batch"
METHOD_SINGLE_PROJECT = "single_project"
METHOD_UNSORTED = "unsorted"

_ACTIVE_PROJECT_STATUSES = (ActivityStatus.ACTIVE.value, ActivityStatus.DRAFT.value)


def _cfg(key, default):
    return current_app.config.get(key, default)


# ── Detection ────────────────────────────────────────────────────────────────


def find_orphaned_tasks() -> list[Activity]:
    """Live tasks with no parent, or whose parent is missing or soft-deleted."""
    parent = aliased(Activity)
    return (
        Activity.query_active()
        .outerjoin(parent, Activity.parent_id == parent.id)
        .filter(
            Activity.activity_type == ActivityType.TASK.value,
            sa.or_(
                Activity.parent_id.is_(None),
                parent.id.is_(None),
                parent.deleted_at.isnot(None),
            ),
        )
        .order_by(Activity.created_at.asc())
        .all()
    )


def get_active_projects() -> list[Activity]:
    return (
        Activity.query_active()
        .filter(Activity.activity_type == ActivityType.PROJECT.value,
                Activity.status.in_(_ACTIVE_PROJECT_STATUSES))
        .order_by(Activity.created_at.asc())
        .all()
    )


# ── Strategies ───────────────────────────────────────────────────────────────


def match_by_name_containment(task: Activity, projects: list[Activity],
                              min_length: int | None = None) -> Activity | None:
    """Project whose normalized name is contained in the task's normalized name.

    When several projects qualify, the longest (most specific) name wins.
    """
    if min_length is None:
        min_length = _cfg("ORPHAN_MIN_NAME_LENGTH", 3)
    task_name = normalize_name(task.name)
    best, best_len = None, 0
    for project in projects:
        project_name = normalize_name(project.name)
        if len(project_name) < min_length:
            continue
        if project_name in task_name and len(project_name) > best_len:
            best, best_len = project, len(project_name)
    return best


def match_by_fuzzy_name(task: Activity, projects: list[Activity]) -> Activity | None:
    threshold = _cfg("ORPHAN_FUZZY_THRESHOLD", 0.6)
    best, _score = find_best_match(task.name, projects, threshold=threshold)
    return best


def match_by_batch(task: Activity) -> Activity | None:
    """Reuse the live parent of a sibling task from the same extraction batch."""
    batch_id = (task.metadata_json or {}).get(BATCH_METADATA_KEY)
    if not batch_id:
        return None

    siblings = (
        Activity.query_active()
        .filter(
            Activity.id != task.id,
            Activity.parent_id.isnot(None),
            Activity.metadata_json[BATCH_METADATA_KEY].as_string() == str(batch_id),
        )
        .order_by(Activity.created_at.asc())
        .all()
    )
    for sibling in siblings:
        parent = sibling.parent
        if parent is not None and not parent.is_deleted:
            return parent
    return None


def match_single_project(task: Activity, projects: list[Activity]) -> Activity | None:
    if not task.owner_entity_id:
        return None
    owned = [p for p in projects if p.owner_entity_id == task.owner_entity_id]
    # 0 or ≥2 is ambiguous
    return owned[0] if len(owned) == 1 else None


def get_or_create_unsorted_project(owner_entity_id: str) -> tuple[Activity, bool]:
    """Return ``(project, created)`` for the owner's sentinel project."""
    name = _cfg("UNSORTED_PROJECT_NAME", "Unsorted Tasks")
    existing = (
        Activity.query_active()
        .filter_by(name=name, activity_type=ActivityType.PROJECT.value,
                   owner_entity_id=owner_entity_id)
        .order_by(Activity.created_at.asc())
        .first()
    )
    if existing:
        return existing, False
    project = activity_service.create_activity({
        "name": name,
        "activity_type": ActivityType.PROJECT.value,
        "status": ActivityStatus.ACTIVE.value,
        "owner_entity_id": owner_entity_id,
        "description": "Holding project for tasks that could not be placed automatically",
    })
    logger.info("Created '%s' project %s for owner %s", name, project.id, owner_entity_id)
    return project, True


# ── Orchestration ────────────────────────────────────────────────────────────


def _pick_parent(task, projects, unsorted_cache) -> tuple[Activity | None, str | None, bool]:
    parent = match_by_name_containment(task, projects)
    if parent is not None:
        return parent, METHOD_NAME_CONTAINMENT, False

    if _cfg("ORPHAN_FUZZY_MATCH_ENABLED", False):
        parent = match_by_fuzzy_name(task, projects)
        if parent is not None:
            return parent, METHOD_FUZZY_MATCH, False

    parent = match_by_batch(task)
    if parent is not None:
        return parent, METHOD_BATCH, False

    parent = match_single_project(task, projects)
    if parent is not None:
        return parent, METHOD_SINGLE_PROJECT, False

    if not task.owner_entity_id:
        return None, None, False

    created = False
    parent = unsorted_cache.get(task.owner_entity_id)
    if parent is None:
        parent, created = get_or_create_unsorted_project(task.owner_entity_id)
        unsorted_cache[task.owner_entity_id] = parent
    return parent, METHOD_UNSORTED, created


def resolve_orphans(tasks: list[Activity]) -> dict:
    """Assign each task in ``tasks`` to a parent using the strategy chain.

    Returns:
        dict: {resolved, unresolved, created_unsorted_project, details, errors}
    """
    results = {
        "resolved": 0,
        "unresolved": 0,
        "created_unsorted_project": False,
        "details": [],
        "errors": [],
    }
    if not tasks:
        return results

    projects = get_active_projects()
    unsorted_cache: dict[str, Activity] = {}

    for task in tasks:
        task_id, task_name = task.id, task.name
        try:
            parent, method, created = _pick_parent(task, projects, unsorted_cache)
            if created:
                results["created_unsorted_project"] = True
            if parent is None:
                results["unresolved"] += 1
                continue

            activity_service.update_activity(task_id, {"parent_id": parent.id})
            results["resolved"] += 1
            results["details"].append({
                "task_id": task_id,
                "task_name": task_name,
                "assigned_parent_id": parent.id,
                "assigned_parent_name": parent.name,
                "method": method,
            })
            logger.debug("Orphan %s → %s via %s", task_id, parent.id, method,
                         extra={"activity_id": task_id, "method": method})
        except Exception as exc:
            logger.warning("Orphan resolution failed for task %s: %s", task_id, exc)
            results["unresolved"] += 1
            results["errors"].append({"task_id": task_id, "error": str(exc)})

    logger.info("Orphan resolution: resolved=%d unresolved=%d",
                results["resolved"], results["unresolved"])
    return results


def auto_assign_orphaned_tasks() -> dict:
    return resolve_orphans(find_orphaned_tasks())
