"""
Activity Core
Batch Dedup — periodic embedding + LLM duplicate cleanup.

One run:
    1. find up to DEDUP_MAX_PAIRS_PER_RUN same-type pairs with cosine
       similarity ≥ DEDUP_COSINE_THRESHOLD
    2. ask the dedup oracle about all pairs in one batch
    3. merge pairs the oracle calls duplicate with confidence
       ≥ DEDUP_AUTO_MERGE_CONFIDENCE

Each merge is its own transaction. A failing pair is logged and skipped;
a failure before any merge reports zero progress and waits for the next run.
Re-running is safe: archived activities are no longer candidates, and
merging one again fails cleanly with NotFoundError.
"""

from __future__ import annotations

import logging

from flask import current_app

from activity_core.ai.dedup_oracle import DedupPair, LLMDedupOracle
from activity_core.ai.gateway import LLMGateway
from activity_core.services.embedding_search import SimilarPair, find_similar_activity_pairs
from activity_core.services.merge_service import merge_activities, select_keeper

logger = logging.getLogger(__name__)


def _default_oracle() -> LLMDedupOracle:
    return LLMDedupOracle(LLMGateway(app=current_app))


def _to_dedup_pair(pair: SimilarPair) -> DedupPair:
    return DedupPair(
        new_item={"type": pair.activity_type, "name": pair.name_b, "id": pair.id_b},
        existing_item={"type": pair.activity_type, "name": pair.name_a, "id": pair.id_a},
        activity_context=f"Embedding similarity {pair.similarity:.2f}",
    )


def run_dedup_batch(oracle=None) -> dict:
    """Run one dedup pass.

    Args:
        oracle: Object with ``decide_batch(pairs)``; defaults to the LLM oracle.

    Returns:
        dict: {activities_merged, pairs_checked, errors}
    """
    cfg = current_app.config
    threshold = cfg.get("DEDUP_COSINE_THRESHOLD", 0.6)
    max_pairs = cfg.get("DEDUP_MAX_PAIRS_PER_RUN", 20)
    auto_merge_confidence = cfg.get("DEDUP_AUTO_MERGE_CONFIDENCE", 0.9)

    results = {"activities_merged": 0, "pairs_checked": 0, "errors": []}

    try:
        pairs = find_similar_activity_pairs(threshold, max_pairs)
        if not pairs:
            logger.info("Dedup batch: no candidate pairs above %.2f", threshold)
            return results

        oracle = oracle or _default_oracle()
        decisions = oracle.decide_batch([_to_dedup_pair(p) for p in pairs])
        results["pairs_checked"] = len(pairs)
    except Exception as exc:
        logger.error("Dedup batch failed before merging: %s", exc, exc_info=True)
        return {"activities_merged": 0, "pairs_checked": 0, "errors": [{"error": str(exc)}]}

    retired: set[str] = set()
    for pair, decision in zip(pairs, decisions):
        if not decision.is_duplicate or decision.confidence < auto_merge_confidence:
            continue
        if pair.id_a in retired or pair.id_b in retired:
            logger.debug("Dedup batch: skipping %s/%s, already merged this run",
                         pair.id_a, pair.id_b)
            continue
        try:
            keep_id, merge_ids = select_keeper([pair.id_a, pair.id_b])
            merge_activities(keep_id, merge_ids)
            retired.update(merge_ids)
            results["activities_merged"] += len(merge_ids)
            logger.info("Dedup batch merged %s into %s (confidence %.2f): %s",
                        merge_ids, keep_id, decision.confidence, decision.reason,
                        extra={"activity_id": keep_id})
        except Exception as exc:
            logger.warning("Dedup batch merge failed for %s/%s: %s", pair.id_a, pair.id_b, exc)
            results["errors"].append({"pair": [pair.id_a, pair.id_b], "error": str(exc)})

    logger.info("Dedup batch: %s", results)
    return results
