"""
Activity Core
Entity models — people and organizations referenced by activities.

The core only reads these tables (client resolution, audit metrics); they
are populated by the ingestion pipeline.
"""

import uuid
from datetime import datetime, timezone

from activity_core.models import db


ENTITY_TYPES = {"person", "organization", "place", "other"}
RELATION_SOURCES = {"manual", "extracted", "inferred"}


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class Entity(db.Model):
    """A person or organization."""

    __tablename__ = "entities"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(500), nullable=False, index=True)
    entity_type = db.Column(db.String(30), nullable=False, default="person",
                            comment="person, organization, place, other")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "entity_type": self.entity_type,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Entity {self.entity_type}:{self.name}>"


class EntityRelation(db.Model):
    """Directed relation between two entities, tagged with how it was obtained."""

    __tablename__ = "entity_relations"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    source_entity_id = db.Column(
        db.String(36), db.ForeignKey("entities.id", ondelete="CASCADE"), nullable=False,
    )
    target_entity_id = db.Column(
        db.String(36), db.ForeignKey("entities.id", ondelete="CASCADE"), nullable=False,
    )
    relation_type = db.Column(db.String(50), nullable=False)
    source = db.Column(db.String(20), nullable=False, default="manual",
                       comment="manual, extracted, inferred")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def __repr__(self):
        return f"<EntityRelation {self.relation_type} ({self.source})>"
