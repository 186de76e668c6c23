"""
Activity Core
Activity hierarchy models.

Models:
    - Activity: a node in the work hierarchy (area → ... → task). Self-referential tree
      with a materialized ancestor path for prefix queries.
    - ActivityMember: an entity's role on an activity.
"""

import json
import uuid
from datetime import datetime, timezone
from enum import Enum

from activity_core.models import db
from activity_core.models.soft_delete import SoftDeleteMixin


__all__ = [
    "ActivityType",
    "ActivityStatus",
    "Priority",
    "ActivityContext",
    "MemberRole",
    "PATH_SEPARATOR",
    "Activity",
    "ActivityMember",
]


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Enums ────────────────────────────────────────────────────────────────────

class ActivityType(str, Enum):
    AREA = "area"
    BUSINESS = "business"
    DIRECTION = "direction"
    PROJECT = "project"
    TASK = "task"
    MILESTONE = "milestone"
    INITIATIVE = "initiative"
    HABIT = "habit"
    LEARNING = "learning"
    EVENT_SERIES = "event_series"


class ActivityStatus(str, Enum):
    DRAFT = "draft"
    IDEA = "idea"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class ActivityContext(str, Enum):
    WORK = "work"
    PERSONAL = "personal"
    ANY = "any"
    LOCATION_BASED = "location_based"


class MemberRole(str, Enum):
    OWNER = "owner"
    MEMBER = "member"
    OBSERVER = "observer"
    ASSIGNEE = "assignee"
    REVIEWER = "reviewer"
    CLIENT = "client"
    CONSULTANT = "consultant"


PATH_SEPARATOR = "/"


# ═════════════════════════════════════════════════════════════════════════════
# 1. Activity
# ═════════════════════════════════════════════════════════════════════════════

class Activity(SoftDeleteMixin, db.Model):
    """
    A node in the activity hierarchy.

    `materialized_path` holds the ancestor ids joined by "/", root first,
    excluding the activity itself (NULL for roots). Only the activity
    service writes parent_id / depth / materialized_path; everything else
    should read the path through `ancestor_ids`.
    """

    __tablename__ = "activities"
    __table_args__ = (
        db.Index("idx_activity_type_status", "activity_type", "status"),
        db.Index("idx_activity_owner_type", "owner_entity_id", "activity_type"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(500), nullable=False)
    activity_type = db.Column(db.String(30), nullable=False,
                              comment="area, business, direction, project, task, ...")
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=ActivityStatus.ACTIVE.value)
    priority = db.Column(db.String(20), nullable=True, default=Priority.MEDIUM.value)
    context = db.Column(db.String(30), nullable=True, default=ActivityContext.ANY.value)

    # Hierarchy
    parent_id = db.Column(
        db.String(36), db.ForeignKey("activities.id", ondelete="SET NULL"),
        nullable=True, index=True, comment="NULL for roots",
    )
    depth = db.Column(db.Integer, nullable=False, default=0, comment="Root = 0")
    materialized_path = db.Column(db.Text, nullable=True, index=True,
                                  comment="Ancestor ids joined by '/', excluding self")

    # Ownership
    owner_entity_id = db.Column(
        db.String(36), db.ForeignKey("entities.id", ondelete="SET NULL"), nullable=True,
    )
    client_entity_id = db.Column(
        db.String(36), db.ForeignKey("entities.id", ondelete="SET NULL"), nullable=True,
        index=True,
    )

    # Scheduling
    deadline = db.Column(db.DateTime(timezone=True), nullable=True)
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)
    recurrence_rule = db.Column(db.String(255), nullable=True, comment="RRULE string")

    metadata_json = db.Column("metadata", db.JSON, nullable=True, default=dict)
    tags = db.Column(db.JSON, nullable=True, default=list)
    progress = db.Column(db.Integer, nullable=False, default=0, comment="0..100")
    embedding_json = db.Column(db.Text, nullable=True,
                               comment="JSON float vector, written by the embedding service")
    version = db.Column(db.Integer, nullable=False, default=1,
                        comment="Optimistic concurrency counter, bumped on reparent and merge")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    last_activity_at = db.Column(db.DateTime(timezone=True), nullable=True)

    children = db.relationship(
        "Activity",
        backref=db.backref("parent", remote_side=[id]),
        lazy="dynamic",
    )
    members = db.relationship("ActivityMember", backref="activity", lazy="dynamic")

    @property
    def ancestor_ids(self) -> list[str]:
        """Ancestor ids, root first. Empty for a root activity."""
        if not self.materialized_path:
            return []
        return self.materialized_path.split(PATH_SEPARATOR)

    @property
    def full_path(self) -> str:
        """Path carried by a direct child of this activity."""
        return PATH_SEPARATOR.join(self.ancestor_ids + [self.id])

    @property
    def embedding(self) -> list[float] | None:
        if not self.embedding_json:
            return None
        return json.loads(self.embedding_json)

    @embedding.setter
    def embedding(self, vector):
        self.embedding_json = json.dumps(list(vector)) if vector is not None else None

    def to_dict(self, include_members=False):
        d = {
            "id": self.id,
            "name": self.name,
            "activity_type": self.activity_type,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "context": self.context,
            "parent_id": self.parent_id,
            "depth": self.depth,
            "materialized_path": self.materialized_path,
            "owner_entity_id": self.owner_entity_id,
            "client_entity_id": self.client_entity_id,
            "deadline": _iso(self.deadline),
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "recurrence_rule": self.recurrence_rule,
            "metadata": self.metadata_json or {},
            "tags": self.tags or [],
            "progress": self.progress,
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "last_activity_at": _iso(self.last_activity_at),
            "deleted_at": _iso(self.deleted_at),
        }
        if include_members:
            d["members"] = [m.to_dict() for m in self.members.filter_by(is_active=True)]
        return d

    def __repr__(self):
        return f"<Activity {self.id[:8]} {self.activity_type}:{self.name[:40]}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. ActivityMember
# ═════════════════════════════════════════════════════════════════════════════

class ActivityMember(db.Model):
    """Entity participation on an activity. One row per (activity, entity, role)."""

    __tablename__ = "activity_members"
    __table_args__ = (
        db.UniqueConstraint("activity_id", "entity_id", "role",
                            name="uq_activity_member_role"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    activity_id = db.Column(
        db.String(36), db.ForeignKey("activities.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    entity_id = db.Column(
        db.String(36), db.ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    role = db.Column(db.String(20), nullable=False, default=MemberRole.MEMBER.value)
    notes = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    joined_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    left_at = db.Column(db.DateTime(timezone=True), nullable=True)
    metadata_json = db.Column("metadata", db.JSON, nullable=True, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "activity_id": self.activity_id,
            "entity_id": self.entity_id,
            "role": self.role,
            "notes": self.notes,
            "is_active": self.is_active,
            "joined_at": _iso(self.joined_at),
            "left_at": _iso(self.left_at),
            "metadata": self.metadata_json or {},
        }

    def __repr__(self):
        return f"<ActivityMember {self.activity_id[:8]}:{self.entity_id[:8]} {self.role}>"
