"""
Activity Core
Scheduled Jobs.

Jobs:
    - dedup_batch_cleanup: embedding + LLM duplicate merge pass
    - data_quality_audit_daily: full data-quality audit, stored as a report
"""

from __future__ import annotations

from typing import Any

from activity_core.services.scheduler_service import register_job


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Batch Dedup
# ═══════════════════════════════════════════════════════════════════════════

@register_job("dedup_batch_cleanup", hour=3)
def dedup_batch_cleanup(app) -> dict[str, Any]:
    """Merge activity pairs that embeddings and the LLM agree are duplicates."""
    from activity_core.services.dedup_batch import run_dedup_batch

    return run_dedup_batch()


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Data Quality Audit
# ═══════════════════════════════════════════════════════════════════════════

@register_job("data_quality_audit_daily", hour=4)
def data_quality_audit_daily(app) -> dict[str, Any]:
    """Run the data-quality audit and persist the report."""
    from activity_core.services.data_quality_service import run_full_audit

    report = run_full_audit()
    return {
        "report_id": report.id,
        "status": report.status,
        "issue_count": len(report.issues or []),
        "metrics": report.metrics,
    }
