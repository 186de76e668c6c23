"""Duplicate Detector — groups live activities by (lower-cased name, type).

A group's first member (oldest ``created_at``) is the "original" used in
report wording; keeper selection for merges lives in merge_service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import sqlalchemy as sa

from activity_core.models import db
from activity_core.models.activity import Activity, ActivityType

logger = logging.getLogger(__name__)


@dataclass
class DuplicateGroup:
    """Derived, never persisted."""
    name: str
    type: str
    activities: list[dict] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.activities)

    @property
    def original(self) -> dict:
        return self.activities[0]

    @property
    def activity_ids(self) -> list[str]:
        return [a["id"] for a in self.activities]

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type,
            "count": self.count,
            "activities": self.activities,
        }


def find_duplicate_groups(types=None) -> list[DuplicateGroup]:
    """Return every (lower(name), type) group with more than one live member.

    Args:
        types: Optional iterable of ActivityType to restrict the scan.
    """
    lower_name = sa.func.lower(Activity.name)
    q = (
        db.session.query(lower_name.label("lower_name"), Activity.activity_type)
        .filter(Activity.live())
    )
    if types:
        q = q.filter(Activity.activity_type.in_([ActivityType(t).value for t in types]))
    keys = (
        q.group_by(lower_name, Activity.activity_type)
        .having(sa.func.count(Activity.id) > 1)
        .order_by(lower_name)
        .all()
    )

    groups = []
    for key_name, key_type in keys:
        members = (
            Activity.query_active()
            .filter(sa.func.lower(Activity.name) == key_name,
                    Activity.activity_type == key_type)
            .order_by(Activity.created_at.asc(), Activity.id.asc())
            .all()
        )
        groups.append(DuplicateGroup(
            name=key_name,
            type=key_type,
            activities=[
                {
                    "id": a.id,
                    "name": a.name,
                    "status": a.status,
                    "created_at": a.created_at.isoformat() if a.created_at else None,
                }
                for a in members
            ],
        ))

    logger.debug("Duplicate scan found %d groups", len(groups))
    return groups


def find_duplicate_projects() -> list[DuplicateGroup]:
    """Duplicate groups across all activity types, as reported by the audit."""
    return find_duplicate_groups()
