"""
Activity Core
Client Resolver — finds the client entity for a project/business activity.

Strategies, first hit wins:
    1. explicit         — the caller supplied a client name
    2. participant_org  — first organization among the participant names
    3. name_search      — general lookup per participant, organizations only

Lookups never create entities. The owner is never accepted as its own client.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

import sqlalchemy as sa

from activity_core.models import db
from activity_core.models.activity import Activity, ActivityMember, ActivityType
from activity_core.models.entity import Entity
from activity_core.services.activity_service import escape_like

logger = logging.getLogger(__name__)

ORGANIZATION = "organization"

# Activity types expected to carry a client link
CLIENT_BEARING_TYPES = (ActivityType.PROJECT.value, ActivityType.BUSINESS.value)


@dataclass
class ClientMatch:
    entity_id: str
    entity_name: str
    method: str

    def to_dict(self) -> dict:
        return {"entity_id": self.entity_id, "entity_name": self.entity_name, "method": self.method}


# ── Entity lookup ────────────────────────────────────────────────────────────


def find_entity_by_name(name: str | None, entity_type: str | None = None) -> Entity | None:
    """Exact case-insensitive match first, then partial (ILIKE), most recently updated wins."""
    name = (name or "").strip()
    if not name:
        return None

    q = Entity.query
    if entity_type:
        q = q.filter(Entity.entity_type == entity_type)

    exact = (
        q.filter(sa.func.lower(Entity.name) == name.lower())
        .order_by(Entity.updated_at.desc())
        .first()
    )
    if exact:
        return exact

    return (
        q.filter(Entity.name.ilike(f"%{escape_like(name)}%", escape="\\"))
        .order_by(Entity.updated_at.desc())
        .first()
    )


def find_organizations_among(names: Iterable[str], exclude_entity_id: str | None = None) -> list[Entity]:
    """Organization entities matching any of ``names``, in name order, deduplicated."""
    found: list[Entity] = []
    seen: set[str] = set()
    for name in names:
        entity = find_entity_by_name(name, entity_type=ORGANIZATION)
        if entity is None or entity.id == exclude_entity_id or entity.id in seen:
            continue
        seen.add(entity.id)
        found.append(entity)
    return found


# ── Resolution ───────────────────────────────────────────────────────────────


def resolve_client(
    explicit_client_name: str | None = None,
    participant_names: Iterable[str] = (),
    owner_entity_id: str | None = None,
) -> ClientMatch | None:
    """Return the best client candidate, or None when no strategy applies."""
    participants = [p for p in (participant_names or []) if p and p.strip()]

    if explicit_client_name:
        entity = find_entity_by_name(explicit_client_name)
        if entity and entity.id != owner_entity_id:
            return ClientMatch(entity.id, entity.name, "explicit")

    orgs = find_organizations_among(participants, exclude_entity_id=owner_entity_id)
    if orgs:
        return ClientMatch(orgs[0].id, orgs[0].name, "participant_org")

    for name in participants:
        entity = find_entity_by_name(name)
        if entity and entity.id != owner_entity_id and entity.entity_type == ORGANIZATION:
            return ClientMatch(entity.id, entity.name, "name_search")

    return None


def find_missing_client_entity() -> list[Activity]:
    """Live project/business activities without a client link."""
    return (
        Activity.query_active()
        .filter(Activity.activity_type.in_(CLIENT_BEARING_TYPES),
                Activity.client_entity_id.is_(None))
        .order_by(Activity.created_at.asc())
        .all()
    )


def _participant_names(activity_id: str) -> list[str]:
    rows = (
        db.session.query(Entity.name)
        .join(ActivityMember, ActivityMember.entity_id == Entity.id)
        .filter(ActivityMember.activity_id == activity_id,
                ActivityMember.is_active.is_(True))
        .order_by(ActivityMember.joined_at.asc())
        .all()
    )
    return [r[0] for r in rows]


def auto_resolve_clients() -> dict:
    """Fill ``client_entity_id`` for every activity that lacks one, where possible.

    Each resolved activity commits on its own; a failure on one activity is
    recorded in ``errors`` and the batch continues.
    """
    results = {"resolved": 0, "unresolved": 0, "details": [], "errors": []}

    for activity in find_missing_client_entity():
        if not activity.owner_entity_id:
            results["unresolved"] += 1
            continue
        try:
            match = resolve_client(
                participant_names=_participant_names(activity.id),
                owner_entity_id=activity.owner_entity_id,
            )
            if match is None:
                results["unresolved"] += 1
                continue
            activity.client_entity_id = match.entity_id
            db.session.commit()
            results["resolved"] += 1
            results["details"].append({
                "activity_id": activity.id,
                "activity_name": activity.name,
                "client_entity_id": match.entity_id,
                "client_name": match.entity_name,
                "method": match.method,
            })
        except Exception as exc:
            db.session.rollback()
            logger.warning("Client resolution failed for activity %s: %s", activity.id, exc)
            results["errors"].append({"activity_id": activity.id, "error": str(exc)})

    logger.info("Client auto-resolution: resolved=%d unresolved=%d errors=%d",
                results["resolved"], results["unresolved"], len(results["errors"]))
    return results
