"""
Activity Core
Data-quality report model.

A report is a snapshot produced by one audit run: metrics, the list of
detected issues, and resolution entries appended afterwards. Issue
positions in `issues` are stable; resolutions refer to them by index.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from activity_core.models import db


class IssueType(str, Enum):
    DUPLICATE = "DUPLICATE"
    ORPHAN = "ORPHAN"
    MISSING_CLIENT = "MISSING_CLIENT"
    MISSING_MEMBERS = "MISSING_MEMBERS"
    UNLINKED_COMMITMENT = "UNLINKED_COMMITMENT"
    EMPTY_FIELDS = "EMPTY_FIELDS"


class IssueSeverity(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


REPORT_STATUSES = {"pending", "reviewed", "resolved"}
RESOLVED_BY = {"auto", "manual"}


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class DataQualityReport(db.Model):
    __tablename__ = "data_quality_reports"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    report_date = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow,
                            index=True)
    metrics = db.Column(db.JSON, nullable=False, default=dict)
    issues = db.Column(db.JSON, nullable=False, default=list)
    resolutions = db.Column(db.JSON, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="pending",
                       comment="pending, reviewed, resolved")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def resolved_indices(self) -> set[int]:
        return {r["issue_index"] for r in (self.resolutions or [])}

    def to_dict(self):
        return {
            "id": self.id,
            "report_date": self.report_date.isoformat() if self.report_date else None,
            "metrics": self.metrics or {},
            "issues": self.issues or [],
            "resolutions": self.resolutions,
            "status": self.status,
            "issue_count": len(self.issues or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<DataQualityReport {self.id[:8]} [{self.status}]>"
