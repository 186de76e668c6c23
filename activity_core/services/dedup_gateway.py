"""
Activity Core
Dedup Gateway — pre-insert duplicate check for extracted tasks.

Escalates from cheap to expensive:
    exact name  →  embedding candidates  →  LLM oracle

and routes the oracle's confidence to an action:
    MERGE             confidence ≥ DEDUP_AUTO_MERGE_CONFIDENCE
    PENDING_APPROVAL  confidence ≥ DEDUP_APPROVAL_CONFIDENCE
    CREATE            otherwise, or when nothing similar exists
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import sqlalchemy as sa
from flask import current_app

from activity_core.ai.dedup_oracle import DedupPair, LLMDedupOracle
from activity_core.ai.gateway import LLMGateway
from activity_core.models.activity import Activity, ActivityStatus, ActivityType
from activity_core.services.embedding_search import find_semantic_candidates
from activity_core.services.similarity import normalize_name

logger = logging.getLogger(__name__)

SEMANTIC_CANDIDATE_LIMIT = 5

_EXCLUDED_STATUSES = (ActivityStatus.CANCELLED.value,)


class DedupAction(str, Enum):
    CREATE = "CREATE"
    MERGE = "MERGE"
    PENDING_APPROVAL = "PENDING_APPROVAL"


@dataclass
class DedupResult:
    action: DedupAction
    existing_id: str | None = None
    confidence: float = 0.0
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "existing_id": self.existing_id,
            "confidence": self.confidence,
            "reason": self.reason,
        }


def route_by_confidence(is_duplicate: bool, confidence: float, existing_id: str,
                        reason: str = "") -> DedupResult:
    cfg = current_app.config
    if not is_duplicate:
        return DedupResult(DedupAction.CREATE, confidence=confidence,
                           reason=reason or "Not a duplicate")
    if confidence >= cfg.get("DEDUP_AUTO_MERGE_CONFIDENCE", 0.9):
        return DedupResult(DedupAction.MERGE, existing_id, confidence, reason)
    if confidence >= cfg.get("DEDUP_APPROVAL_CONFIDENCE", 0.7):
        return DedupResult(DedupAction.PENDING_APPROVAL, existing_id, confidence, reason)
    low = "Low confidence duplicate" + (f": {reason}" if reason else "")
    return DedupResult(DedupAction.CREATE, confidence=confidence, reason=low)


def _exact_match(name: str, normalized: str, owner_entity_id: str | None) -> Activity | None:
    q = Activity.query_active().filter(
        Activity.activity_type == ActivityType.TASK.value,
        Activity.status.notin_(_EXCLUDED_STATUSES),
        sa.func.lower(Activity.name).in_({name.strip().lower(), normalized}),
    )
    if owner_entity_id:
        q = q.filter(Activity.owner_entity_id == owner_entity_id)
    return q.order_by(Activity.created_at.asc(), Activity.id.asc()).first()


def check_task(
    name: str,
    owner_entity_id: str | None = None,
    embedding: Sequence[float] | None = None,
    oracle=None,
) -> DedupResult:
    """Decide whether an incoming task should be created, merged, or queued for approval."""
    normalized = normalize_name(name)
    if not normalized:
        return DedupResult(DedupAction.CREATE, reason="Empty name")

    exact = _exact_match(name, normalized, owner_entity_id)
    if exact is not None:
        logger.debug("Dedup gateway: exact match %s for '%s'", exact.id, name)
        return DedupResult(DedupAction.MERGE, exact.id, 1.0, "Exact name match")

    if not embedding:
        return DedupResult(DedupAction.CREATE, reason="No exact match and no embedding")

    candidates = find_semantic_candidates(
        embedding,
        activity_type=ActivityType.TASK.value,
        owner_entity_id=owner_entity_id,
        exclude_statuses=_EXCLUDED_STATUSES,
        threshold=current_app.config.get("SEMANTIC_CANDIDATE_THRESHOLD", 0.5),
        limit=SEMANTIC_CANDIDATE_LIMIT,
    )
    if not candidates:
        return DedupResult(DedupAction.CREATE, reason="No similar tasks")

    best, similarity = candidates[0]
    oracle = oracle or LLMDedupOracle(LLMGateway(app=current_app))
    decision = oracle.decide_batch([DedupPair(
        new_item={"type": ActivityType.TASK.value, "name": name},
        existing_item={"type": best.activity_type, "name": best.name, "id": best.id,
                       "description": best.description},
        activity_context=f"Embedding similarity {similarity:.2f}",
    )])[0]

    result = route_by_confidence(decision.is_duplicate, decision.confidence, best.id,
                                 decision.reason)
    logger.info("Dedup gateway: '%s' → %s (candidate %s, confidence %.2f)",
                name, result.action.value, best.id, decision.confidence)
    return result
