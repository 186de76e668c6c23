"""
Tests — data-quality audit, metrics and issue resolution.
"""

import pytest

from activity_core.core.exceptions import NotFoundError, ValidationError
from activity_core.models import db
from activity_core.models.commitment import Commitment
from activity_core.models.data_quality import DataQualityReport
from activity_core.models.entity import Entity, EntityRelation
from activity_core.services import activity_service
from activity_core.services.data_quality_service import (
    get_current_metrics,
    get_latest_report,
    get_report,
    get_reports,
    resolve_issue,
    run_full_audit,
)


def _seed_messy_graph(make_activity):
    """Two duplicate projects, one orphan task, no client links anywhere."""
    acme = Entity(name="Acme", entity_type="organization")
    db.session.add(acme)
    db.session.commit()

    alpha = make_activity("Project Alpha", "project", description="Main", tags=["x"])
    alpha_dup = make_activity("project alpha", "project")
    placed = make_activity("Placed", parent=alpha)
    orphan = make_activity("Loose end")
    activity_service.add_member(alpha.id, acme.id, "client")

    db.session.add_all([
        Commitment(title="Linked", activity_id=placed.id),
        Commitment(title="Floating"),
        EntityRelation(source_entity_id=acme.id, target_entity_id=acme.id,
                       relation_type="self", source="inferred"),
        EntityRelation(source_entity_id=acme.id, target_entity_id=acme.id,
                       relation_type="self", source="manual"),
    ])
    db.session.commit()
    return alpha, alpha_dup, placed, orphan


# ═══════════════════════════════════════════════════════════════════════════
#  Metrics
# ═══════════════════════════════════════════════════════════════════════════

class TestMetrics:

    def test_empty_database(self):
        metrics = get_current_metrics()
        assert metrics["total_activities"] == 0
        assert metrics["duplicate_groups"] == 0
        assert metrics["activity_member_coverage"]["rate"] == 0.0
        assert metrics["field_fill_rate"]["avg_fill_rate"] == 0.0

    def test_counts(self, make_activity):
        _seed_messy_graph(make_activity)
        metrics = get_current_metrics()

        assert metrics["total_activities"] == 4
        assert metrics["duplicate_groups"] == 1
        assert metrics["orphaned_tasks"] == 1
        assert metrics["missing_client_entity"] == 2
        assert metrics["activity_member_coverage"] == {"total": 4, "with_members": 1, "rate": 0.25}
        assert metrics["commitment_linkage_rate"] == {"total": 2, "linked": 1, "rate": 0.5}
        assert metrics["inferred_relations_count"] == 1

    def test_field_fill_rate(self, make_activity):
        # priority always set by default; first has description + tags too
        make_activity("Full", description="d", tags=["t"])
        make_activity("Bare")
        fill = get_current_metrics()["field_fill_rate"]
        assert fill["avg_fill_rate"] == pytest.approx(round((3 / 4 + 1 / 4) / 2, 2))
        assert fill["fields_checked"] == ["description", "priority", "deadline", "tags"]

    def test_metrics_do_not_persist(self, make_activity):
        _seed_messy_graph(make_activity)
        get_current_metrics()
        assert DataQualityReport.query.count() == 0


# ═══════════════════════════════════════════════════════════════════════════
#  Audit
# ═══════════════════════════════════════════════════════════════════════════

class TestAudit:

    def test_issues_in_order(self, make_activity):
        alpha, alpha_dup, _placed, orphan = _seed_messy_graph(make_activity)

        report = run_full_audit()

        assert report.status == "pending"
        types = [i["type"] for i in report.issues]
        assert types == ["DUPLICATE", "ORPHAN", "MISSING_CLIENT", "MISSING_CLIENT"]

        dup_issue = report.issues[0]
        assert dup_issue["severity"] == "HIGH"
        assert dup_issue["activity_id"] == alpha_dup.id
        assert dup_issue["description"] == (
            'Duplicate of "Project Alpha" (2 total with same name and type "project")'
        )
        assert alpha.id in dup_issue["suggested_action"]

        orphan_issue = report.issues[1]
        assert orphan_issue["severity"] == "MEDIUM"
        assert orphan_issue["activity_id"] == orphan.id
        assert orphan_issue["description"] == "Task has no valid parent activity"

        assert report.issues[2]["severity"] == "LOW"
        assert report.issues[2]["description"] == "project without client entity"

    def test_clean_graph_has_no_issues(self, make_activity):
        acme = Entity(name="Acme", entity_type="organization")
        db.session.add(acme)
        db.session.commit()
        project = make_activity("Alpha", "project", client_entity_id=acme.id)
        make_activity("Task", parent=project)
        assert run_full_audit().issues == []

    def test_report_listing(self, make_activity):
        first = run_full_audit()
        second = run_full_audit()
        assert get_latest_report().id == second.id
        assert [r.id for r in get_reports()] == [second.id, first.id]
        assert [r.id for r in get_reports(limit=1, offset=1)] == [first.id]
        assert get_report(first.id).id == first.id

    def test_unknown_report(self):
        with pytest.raises(NotFoundError):
            get_report("missing")


# ═══════════════════════════════════════════════════════════════════════════
#  resolve_issue
# ═══════════════════════════════════════════════════════════════════════════

class TestResolveIssue:

    def test_status_moves_reviewed_then_resolved(self, make_activity):
        make_activity("Loose one")
        make_activity("Loose two")
        report = run_full_audit()
        assert len(report.issues) == 2

        report = resolve_issue(report.id, 0, "assigned to Alpha")
        assert report.status == "reviewed"
        assert report.resolutions[0]["issue_index"] == 0
        assert report.resolutions[0]["resolved_by"] == "manual"

        # Re-resolving the same index does not complete the report
        report = resolve_issue(report.id, 0, "double check", resolved_by="auto")
        assert report.status == "reviewed"

        report = resolve_issue(report.id, 1, "archived")
        assert report.status == "resolved"
        assert len(report.resolutions) == 3

    def test_resolutions_persist(self, make_activity):
        make_activity("Loose")
        report = run_full_audit()
        resolve_issue(report.id, 0, "done")
        db.session.expire_all()
        stored = db.session.get(DataQualityReport, report.id)
        assert stored.status == "resolved"
        assert stored.resolutions[0]["action"] == "done"

    def test_index_out_of_range(self, make_activity):
        make_activity("Loose one")
        make_activity("Loose two")
        report = run_full_audit()
        with pytest.raises(ValidationError, match=r"Issue index 5 out of range \(0-1\)"):
            resolve_issue(report.id, 5, "nope")
        with pytest.raises(ValidationError):
            resolve_issue(report.id, -1, "nope")
