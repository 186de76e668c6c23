"""
Activity Core
Scheduler Service.

Catalogue of the nightly maintenance jobs. Timing belongs to an external
cron calling `flask run-job <name>`; this service knows which jobs exist,
runs one inside the app context and keeps its history in ScheduledJob.

    @register_job("dedup_batch_cleanup", hour=3)
    def dedup_batch_cleanup(app): ...

    SchedulerService.ensure_jobs_registered()
    SchedulerService.run_job("dedup_batch_cleanup")
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from flask import Flask

from activity_core.models import db
from activity_core.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobSpec:
    name: str
    fn: Callable
    hour: int = 0
    minute: int = 0

    @property
    def description(self) -> str:
        doc = (self.fn.__doc__ or "").strip()
        return doc.splitlines()[0] if doc else f"Maintenance job {self.name}"

    def schedule_config(self) -> dict:
        return {
            "hour": str(self.hour),
            "minute": str(self.minute),
            "description": f"Daily at {self.hour:02d}:{self.minute:02d}",
        }


_job_registry: dict[str, JobSpec] = {}


def register_job(name: str, *, hour: int = 0, minute: int = 0):
    """Register ``fn(app)`` as a maintenance job with its default daily slot."""
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = JobSpec(name, fn, hour, minute)
        return fn
    return decorator


def get_registered_jobs() -> dict[str, JobSpec]:
    return dict(_job_registry)


def _result_payload(result) -> dict:
    return result if isinstance(result, dict) else {"output": str(result)}


# ═══════════════════════════════════════════════════════════════════════════
#  Service
# ═══════════════════════════════════════════════════════════════════════════

class SchedulerService:
    """
    Runs registered jobs against a Flask app.

    A job failure never propagates out of ``run_job``; it is logged and
    counted on the job's ScheduledJob row.
    """

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("Scheduler ready with jobs: %s", ", ".join(sorted(_job_registry)))

    @classmethod
    def ensure_jobs_registered(cls) -> list[str]:
        """Create missing ScheduledJob rows; return the names that were created."""
        if not cls._app:
            return []

        with cls._app.app_context():
            known = {name for (name,) in db.session.query(ScheduledJob.job_name)}
            created = [spec for name, spec in _job_registry.items() if name not in known]
            for spec in created:
                db.session.add(ScheduledJob(
                    job_name=spec.name,
                    description=spec.description,
                    schedule_config=spec.schedule_config(),
                    status="active",
                    is_enabled=True,
                ))
            if created:
                db.session.commit()
                logger.info("Registered %d scheduled job rows", len(created))
        return [spec.name for spec in created]

    @classmethod
    def _is_disabled(cls, job_name: str) -> bool:
        with cls._app.app_context():
            record = ScheduledJob.query.filter_by(job_name=job_name).first()
            return record is not None and not record.is_enabled

    @classmethod
    def _record(cls, spec: JobSpec, status: str, duration_ms: int, result, error) -> None:
        try:
            with cls._app.app_context():
                record = ScheduledJob.query.filter_by(job_name=spec.name).first()
                if record is None:
                    record = ScheduledJob(job_name=spec.name, description=spec.description,
                                          schedule_config=spec.schedule_config())
                    db.session.add(record)
                record.record_run(status=status, duration_ms=duration_ms,
                                  result=_result_payload(result), error=error)
                db.session.commit()
        except Exception:
            logger.exception("Could not store run of %s", spec.name,
                             extra={"job_name": spec.name})

    @classmethod
    def run_job(cls, job_name: str, *, force: bool = False) -> dict:
        """
        Run one job now.

        A disabled job is skipped unless ``force`` is set.

        Returns:
            {job_name, status, duration_ms, result, error}; status is one of
            success, failed, skipped, error (unknown job / no app).
        """
        spec = _job_registry.get(job_name)
        if spec is None:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        if not force and cls._is_disabled(job_name):
            logger.info("Job %s is disabled, skipping", job_name, extra={"job_name": job_name})
            return {"job_name": job_name, "status": "skipped", "duration_ms": 0,
                    "result": None, "error": None}

        result, error, status = None, None, "success"
        started = time.monotonic()
        try:
            with cls._app.app_context():
                result = spec.fn(cls._app)
        except Exception as exc:
            status, error = "failed", str(exc)
            logger.exception("Job %s failed", job_name, extra={"job_name": job_name})
        duration_ms = int((time.monotonic() - started) * 1000)

        logger.info("Job %s %s in %d ms", job_name, status, duration_ms,
                    extra={"job_name": job_name, "duration_ms": duration_ms})
        cls._record(spec, status, duration_ms, result, error)
        return {"job_name": job_name, "status": status, "duration_ms": duration_ms,
                "result": result, "error": error}

    @classmethod
    def list_jobs(cls) -> list[dict]:
        rows = {r.job_name: r for r in ScheduledJob.query.all()}
        return [
            {
                "job_name": name,
                "cron": rows[name].cron_expression if name in rows
                else f"{spec.minute} {spec.hour} * * *",
                "db_record": rows[name].to_dict() if name in rows else None,
            }
            for name, spec in sorted(_job_registry.items())
        ]

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        record = ScheduledJob.query.filter_by(job_name=job_name).first()
        return record.to_dict() if record else None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if record is None:
            return None
        record.is_enabled = enabled
        record.status = "active" if enabled else "paused"
        db.session.commit()
        logger.info("Job %s %s", job_name, record.status, extra={"job_name": job_name})
        return record.to_dict()
