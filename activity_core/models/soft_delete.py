"""
Soft delete support for activities and commitments.

Nothing in the core removes a row physically. Deleting or merging stamps
`deleted_at`; every read path filters on it through `live()` or
`query_active()`.

Usage:
    class Activity(SoftDeleteMixin, db.Model):
        ...

    Activity.query_active().filter_by(activity_type="task")
    db.session.query(Activity.id).filter(Activity.live())
"""

from datetime import datetime, timezone

from activity_core.models import db


class SoftDeleteMixin:
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True,
                           comment="Set on delete or merge; NULL while live")

    def soft_delete(self, at=None):
        self.deleted_at = at or datetime.now(timezone.utc)

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def live(cls):
        """SQL criterion matching rows that are not soft-deleted."""
        return cls.deleted_at.is_(None)

    @classmethod
    def query_active(cls):
        return cls.query.filter(cls.live())
