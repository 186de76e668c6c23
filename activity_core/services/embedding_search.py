"""
Activity Core
Embedding search over activities.

Vectors are produced elsewhere and stored as JSON in ``embedding_json``.
On PostgreSQL with pgvector the similarity is computed in the database
(``1 - (a <=> b)``); anywhere else, or if the pgvector query fails, the
same computation runs in Python with the similarity kernel.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Sequence

import sqlalchemy as sa

from activity_core.models import db
from activity_core.models.activity import Activity
from activity_core.services.similarity import (
    cosine_similarity,
    distance_to_similarity,
    format_embedding_for_query,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimilarPair:
    id_a: str
    name_a: str
    id_b: str
    name_b: str
    activity_type: str
    similarity: float


def _pgvector_enabled() -> bool:
    return db.engine.dialect.name == "postgresql"


def _load_vector(raw: str | None) -> list[float] | None:
    if not raw:
        return None
    try:
        vec = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    return vec if isinstance(vec, list) and vec else None


# ── Pairs (batch dedup) ──────────────────────────────────────────────────────


_PAIRS_SQL = sa.text("""
    SELECT a.id, a.name, b.id, b.name, a.activity_type,
           (a.embedding_json::vector <=> b.embedding_json::vector) AS distance
    FROM activities a
    JOIN activities b
      ON a.id < b.id AND a.activity_type = b.activity_type
    WHERE a.deleted_at IS NULL AND b.deleted_at IS NULL
      AND a.embedding_json IS NOT NULL AND b.embedding_json IS NOT NULL
      AND 1 - (a.embedding_json::vector <=> b.embedding_json::vector) >= :threshold
    ORDER BY distance ASC
    LIMIT :limit
""")


def _pairs_pgvector(threshold: float, limit: int) -> list[SimilarPair]:
    rows = db.session.execute(_PAIRS_SQL, {"threshold": threshold, "limit": limit}).all()
    return [
        SimilarPair(r[0], r[1], r[2], r[3], r[4], distance_to_similarity(float(r[5])))
        for r in rows
    ]


def _pairs_python(threshold: float, limit: int) -> list[SimilarPair]:
    rows = (
        db.session.query(Activity.id, Activity.name, Activity.activity_type, Activity.embedding_json)
        .filter(Activity.live(), Activity.embedding_json.isnot(None))
        .order_by(Activity.id.asc())
        .all()
    )
    by_type: dict[str, list[tuple[str, str, list[float]]]] = {}
    for activity_id, name, activity_type, raw in rows:
        vec = _load_vector(raw)
        if vec is not None:
            by_type.setdefault(activity_type, []).append((activity_id, name, vec))

    pairs = []
    for activity_type, items in by_type.items():
        for i, (id_a, name_a, vec_a) in enumerate(items):
            for id_b, name_b, vec_b in items[i + 1:]:
                try:
                    sim = cosine_similarity(vec_a, vec_b)
                except ValueError:
                    continue
                if sim >= threshold:
                    pairs.append(SimilarPair(id_a, name_a, id_b, name_b, activity_type, sim))

    pairs.sort(key=lambda p: p.similarity, reverse=True)
    return pairs[:limit]


def find_similar_activity_pairs(threshold: float, limit: int) -> list[SimilarPair]:
    """Live same-type activity pairs with cosine similarity ≥ threshold, best first.

    Each pair is ordered so that ``id_a < id_b``.
    """
    if _pgvector_enabled():
        try:
            return _pairs_pgvector(threshold, limit)
        except Exception as exc:
            db.session.rollback()
            logger.warning("pgvector pair search failed, using Python fallback: %s", exc)
    return _pairs_python(threshold, limit)


# ── Candidates for one vector (dedup gateway) ────────────────────────────────


def find_semantic_candidates(
    embedding: Sequence[float],
    *,
    activity_type: str,
    owner_entity_id: str | None,
    exclude_statuses: Sequence[str] = (),
    threshold: float,
    limit: int = 5,
) -> list[tuple[Activity, float]]:
    """Activities closest to ``embedding`` within an owner/type scope, best first."""
    q = Activity.query_active().filter(
        Activity.activity_type == activity_type,
        Activity.embedding_json.isnot(None),
    )
    if owner_entity_id:
        q = q.filter(Activity.owner_entity_id == owner_entity_id)
    if exclude_statuses:
        q = q.filter(Activity.status.notin_(list(exclude_statuses)))

    if _pgvector_enabled():
        try:
            vec_str = format_embedding_for_query(embedding)
            distance = sa.literal_column(f"embedding_json::vector <=> '{vec_str}'::vector")
            rows = (
                q.with_entities(Activity, distance.label("distance"))
                .filter(1 - distance >= threshold)
                .order_by(sa.literal_column("distance").asc())
                .limit(limit)
                .all()
            )
            return [(activity, distance_to_similarity(float(dist))) for activity, dist in rows]
        except Exception as exc:
            db.session.rollback()
            logger.warning("pgvector candidate search failed, using Python fallback: %s", exc)

    scored = []
    for activity in q.all():
        vec = _load_vector(activity.embedding_json)
        if vec is None:
            continue
        try:
            sim = cosine_similarity(embedding, vec)
        except ValueError:
            continue
        if sim >= threshold:
            scored.append((activity, sim))
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:limit]
