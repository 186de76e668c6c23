"""
Activity Core
LLM Dedup Oracle — asks an LLM whether candidate pairs are the same thing.

Used by the batch dedup job and the per-task dedup gateway for cases that
string and embedding similarity cannot settle on their own. The oracle
never raises: when the LLM is missing, fails, or answers garbage, every
pair comes back as "not a duplicate" with confidence 0.0.

Usage:
    oracle = LLMDedupOracle(LLMGateway(app))
    decisions = oracle.decide_batch([DedupPair(new_item=..., existing_item=...)])
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are a deduplication assistant for a personal work-tracking system.
For each numbered pair decide whether the NEW item and the EXISTING item describe the
same real-world activity (same project, same task, same initiative). Different wording,
language or extra detail can still be a duplicate; similar topics with different scope,
owner or deliverable are not.

Respond with JSON only:
{"decisions": [{"pair_index": <int>, "is_duplicate": <bool>, "confidence": <0..1>, "reason": "<short>"}]}
Return exactly one decision per pair."""


@dataclass
class DedupPair:
    """One candidate pair. Items are dicts with at least ``type`` and ``name``;
    ``existing_item`` also carries ``id``."""
    new_item: dict
    existing_item: dict
    activity_context: str | None = None


@dataclass
class DedupDecision:
    is_duplicate: bool
    confidence: float
    reason: str
    merge_into_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "is_duplicate": self.is_duplicate,
            "confidence": self.confidence,
            "reason": self.reason,
            "merge_into_id": self.merge_into_id,
        }


def _not_duplicate(reason: str) -> DedupDecision:
    return DedupDecision(is_duplicate=False, confidence=0.0, reason=reason)


def _clamp(value) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _describe(item: dict) -> str:
    parts = [f'{item.get("type", "item")}: "{item.get("name", "")}"']
    if item.get("description"):
        parts.append(f'description: "{item["description"][:300]}"')
    if item.get("context"):
        parts.append(f'context: "{item["context"][:300]}"')
    return ", ".join(parts)


class LLMDedupOracle:
    """Batch duplicate arbitration over an LLMGateway."""

    PURPOSE = "dedup_decision"

    def __init__(self, gateway=None, model: str | None = None):
        self.gateway = gateway
        self.model = model

    def is_available(self) -> bool:
        return self.gateway is not None and self.gateway.is_available()

    def decide_batch(self, pairs: list[DedupPair]) -> list[DedupDecision]:
        """Return one decision per pair, in input order."""
        if not pairs:
            return []

        if not self.is_available():
            logger.info("Dedup oracle unavailable, treating %d pairs as distinct", len(pairs))
            return [_not_duplicate("LLM unavailable") for _ in pairs]

        try:
            response = self.gateway.chat(
                messages=self._build_messages(pairs),
                model=self.model,
                purpose=self.PURPOSE,
                temperature=0.0,
            )
            parsed = self._parse_response(response.get("content") or "")
        except Exception as exc:
            logger.warning("Dedup oracle call failed: %s", exc)
            return [_not_duplicate(f"LLM call failed: {exc}") for _ in pairs]

        raw_decisions = parsed.get("decisions")
        if not isinstance(raw_decisions, list):
            logger.warning("Dedup oracle returned no decisions list")
            return [_not_duplicate("Unparseable LLM response") for _ in pairs]

        by_index = {}
        for raw in raw_decisions:
            if not isinstance(raw, dict):
                continue
            idx = raw.get("pair_index", raw.get("pairIndex"))
            if isinstance(idx, int):
                by_index[idx] = raw

        decisions = []
        for i, pair in enumerate(pairs):
            raw = by_index.get(i)
            if raw is None:
                decisions.append(_not_duplicate("LLM did not return decision for this pair"))
                continue
            is_dup = _as_bool(raw.get("is_duplicate", raw.get("isDuplicate", False)))
            decisions.append(DedupDecision(
                is_duplicate=is_dup,
                confidence=_clamp(raw.get("confidence", 0.0)),
                reason=str(raw.get("reason", "")),
                merge_into_id=pair.existing_item.get("id") if is_dup else None,
            ))
        return decisions

    @staticmethod
    def _build_messages(pairs: list[DedupPair]) -> list[dict]:
        lines = []
        for i, pair in enumerate(pairs):
            lines.append(f"Pair {i}:")
            lines.append(f"  NEW: {_describe(pair.new_item)}")
            lines.append(f"  EXISTING: {_describe(pair.existing_item)}")
            if pair.activity_context:
                lines.append(f"  Context: {pair.activity_context[:500]}")
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": "\n".join(lines)},
        ]

    @staticmethod
    def _parse_response(content: str) -> dict:
        """Parse JSON response from LLM. Returns {} when nothing usable is found."""
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError:
            parsed = None
            m = re.search(r"\{.*\}", content, re.DOTALL)
            if m:
                try:
                    parsed = json.loads(m.group())
                except json.JSONDecodeError:
                    pass
        return parsed if isinstance(parsed, dict) else {}
