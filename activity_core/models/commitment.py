"""
Activity Core
Commitment model — an obligation between two entities, optionally tied to
one activity. Merges reassign commitments to the surviving activity.
"""

import uuid
from datetime import datetime, timezone

from activity_core.models import db
from activity_core.models.soft_delete import SoftDeleteMixin


COMMITMENT_STATUSES = {"pending", "in_progress", "completed", "cancelled", "overdue"}


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class Commitment(SoftDeleteMixin, db.Model):
    __tablename__ = "commitments"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=True)
    from_entity_id = db.Column(
        db.String(36), db.ForeignKey("entities.id", ondelete="SET NULL"), nullable=True,
        comment="Who promised",
    )
    to_entity_id = db.Column(
        db.String(36), db.ForeignKey("entities.id", ondelete="SET NULL"), nullable=True,
        comment="Who it was promised to",
    )
    activity_id = db.Column(
        db.String(36), db.ForeignKey("activities.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    status = db.Column(db.String(20), nullable=False, default="pending")
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    embedding_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "from_entity_id": self.from_entity_id,
            "to_entity_id": self.to_entity_id,
            "activity_id": self.activity_id,
            "status": self.status,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }

    def __repr__(self):
        return f"<Commitment {self.id[:8]}: {self.title[:40]}>"
