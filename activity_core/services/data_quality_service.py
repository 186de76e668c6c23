"""
Activity Core
Data-Quality Auditor.

Collects metrics + issues over the activity graph in one pass and persists
them as a DataQualityReport. Reports are then worked through with
resolve_issue(), which moves the report pending → reviewed → resolved.

Usage:
    from activity_core.services.data_quality_service import run_full_audit
    report = run_full_audit()
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import sqlalchemy as sa

from activity_core.core.exceptions import NotFoundError, ValidationError
from activity_core.models import db
from activity_core.models.activity import Activity, ActivityMember
from activity_core.models.commitment import Commitment
from activity_core.models.data_quality import DataQualityReport, IssueSeverity, IssueType
from activity_core.models.entity import EntityRelation
from activity_core.services.client_resolution import find_missing_client_entity
from activity_core.services.duplicate_detector import find_duplicate_projects
from activity_core.services.orphan_resolution import find_orphaned_tasks

logger = logging.getLogger(__name__)

FILL_RATE_FIELDS = ("description", "priority", "deadline", "tags")
INFERRED_SOURCES = ("extracted", "inferred")


def _rate(part: int, total: int) -> float:
    return round(part / total, 2) if total else 0.0


# ── Metric helpers ───────────────────────────────────────────────────────────


def _member_coverage(total: int) -> dict:
    with_members = (
        db.session.query(sa.func.count(sa.distinct(ActivityMember.activity_id)))
        .join(Activity, Activity.id == ActivityMember.activity_id)
        .filter(Activity.live(), ActivityMember.is_active.is_(True))
        .scalar()
    ) or 0
    return {"total": total, "with_members": with_members, "rate": _rate(with_members, total)}


def _commitment_linkage() -> dict:
    total = Commitment.query_active().count()
    linked = Commitment.query_active().filter(Commitment.activity_id.isnot(None)).count()
    return {"total": total, "linked": linked, "rate": _rate(linked, total)}


def _inferred_relations_count() -> int:
    return EntityRelation.query.filter(EntityRelation.source.in_(INFERRED_SOURCES)).count()


def _field_fill_rate() -> dict:
    rows = (
        db.session.query(Activity.description, Activity.priority, Activity.deadline, Activity.tags)
        .filter(Activity.live())
        .all()
    )
    if not rows:
        return {"avg_fill_rate": 0.0, "fields_checked": list(FILL_RATE_FIELDS)}

    total_fill = 0.0
    for description, priority, deadline, tags in rows:
        filled = sum((
            bool(description and description.strip()),
            bool(priority),
            deadline is not None,
            bool(tags),
        ))
        total_fill += filled / len(FILL_RATE_FIELDS)
    return {
        "avg_fill_rate": round(total_fill / len(rows), 2),
        "fields_checked": list(FILL_RATE_FIELDS),
    }


def _collect_metrics_data() -> dict:
    """Single fetch shared by run_full_audit and get_current_metrics."""
    total = Activity.query_active().count()
    duplicate_groups = find_duplicate_projects()
    orphans = find_orphaned_tasks()
    missing_client = find_missing_client_entity()

    metrics = {
        "total_activities": total,
        "duplicate_groups": len(duplicate_groups),
        "orphaned_tasks": len(orphans),
        "missing_client_entity": len(missing_client),
        "activity_member_coverage": _member_coverage(total),
        "commitment_linkage_rate": _commitment_linkage(),
        "inferred_relations_count": _inferred_relations_count(),
        "field_fill_rate": _field_fill_rate(),
    }
    return {
        "metrics": metrics,
        "duplicate_groups": duplicate_groups,
        "orphans": orphans,
        "missing_client": missing_client,
    }


def _build_issues(data: dict) -> list[dict]:
    issues = []

    for group in data["duplicate_groups"]:
        first = group.original
        for dup in group.activities[1:]:
            issues.append({
                "type": IssueType.DUPLICATE.value,
                "severity": IssueSeverity.HIGH.value,
                "activity_id": dup["id"],
                "activity_name": dup["name"],
                "description": (
                    f'Duplicate of "{first["name"]}" '
                    f'({group.count} total with same name and type "{group.type}")'
                ),
                "suggested_action": f"Merge with activity {first['id']} or archive this duplicate",
            })

    for task in data["orphans"]:
        issues.append({
            "type": IssueType.ORPHAN.value,
            "severity": IssueSeverity.MEDIUM.value,
            "activity_id": task.id,
            "activity_name": task.name,
            "description": "Task has no valid parent activity",
            "suggested_action": "Assign to appropriate parent project or initiative",
        })

    for activity in data["missing_client"]:
        issues.append({
            "type": IssueType.MISSING_CLIENT.value,
            "severity": IssueSeverity.LOW.value,
            "activity_id": activity.id,
            "activity_name": activity.name,
            "description": f"{activity.activity_type} without client entity",
            "suggested_action": "Link to client entity or mark as internal",
        })

    return issues


# ── Public API ───────────────────────────────────────────────────────────────


def run_full_audit() -> DataQualityReport:
    """Gather metrics + issues and persist a new pending report."""
    data = _collect_metrics_data()
    issues = _build_issues(data)

    report = DataQualityReport(
        report_date=datetime.now(timezone.utc),
        metrics=data["metrics"],
        issues=issues,
        resolutions=None,
        status="pending",
    )
    db.session.add(report)
    db.session.commit()

    logger.info(
        "Data quality audit %s: %d activities, %d issues (dup_groups=%d orphans=%d missing_client=%d)",
        report.id, data["metrics"]["total_activities"], len(issues),
        data["metrics"]["duplicate_groups"], data["metrics"]["orphaned_tasks"],
        data["metrics"]["missing_client_entity"],
        extra={"report_id": report.id},
    )
    return report


def get_current_metrics() -> dict:
    """Live metrics without persisting a report."""
    return _collect_metrics_data()["metrics"]


def get_reports(limit: int = 20, offset: int = 0) -> list[DataQualityReport]:
    return (
        DataQualityReport.query
        .order_by(DataQualityReport.report_date.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_latest_report() -> DataQualityReport | None:
    return DataQualityReport.query.order_by(DataQualityReport.report_date.desc()).first()


def get_report(report_id: str) -> DataQualityReport:
    report = db.session.get(DataQualityReport, report_id)
    if report is None:
        raise NotFoundError(resource="DataQualityReport", resource_id=report_id)
    return report


def resolve_issue(report_id: str, issue_index: int, action: str,
                  resolved_by: str = "manual") -> DataQualityReport:
    """Record a resolution for one issue and advance the report status.

    Status is ``resolved`` once every issue index has at least one
    resolution, ``reviewed`` otherwise.
    """
    report = get_report(report_id)
    issue_count = len(report.issues or [])
    if not 0 <= issue_index < issue_count:
        raise ValidationError(
            f"Issue index {issue_index} out of range (0-{issue_count - 1})",
            details={"issue_index": issue_index},
        )

    # Reassign so the JSON column is flagged dirty
    report.resolutions = list(report.resolutions or []) + [{
        "issue_index": issue_index,
        "resolved_at": datetime.now(timezone.utc).isoformat(),
        "resolved_by": resolved_by,
        "action": action,
    }]
    report.status = "resolved" if len(report.resolved_indices) >= issue_count else "reviewed"
    db.session.commit()

    logger.info("Report %s issue %d resolved (%s) → %s",
                report_id, issue_index, resolved_by, report.status,
                extra={"report_id": report_id})
    return report
