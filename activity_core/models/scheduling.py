"""
Activity Core
Maintenance job registry model.

Models:
    - ScheduledJob: one row per registered maintenance job; holds its cron
      slot, the enabled flag and the outcome of the last run.
"""

from datetime import datetime, timezone

from activity_core.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class ScheduledJob(db.Model):
    """
    A maintenance job known to the scheduler.

    Timing is owned by the external cron; `schedule_config` only records the
    slot the job is meant to occupy (``{"hour", "minute", "description"}``)
    so that `flask list-jobs` can print a crontab line for it.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), default="")
    schedule_config = db.Column(db.JSON, default=dict, comment="Daily cron slot")
    status = db.Column(db.String(20), default="active", comment="active, paused")
    is_enabled = db.Column(db.Boolean, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True, comment="success, failed")
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, default=0)
    failure_count = db.Column(db.Integer, default=0)
    consecutive_failures = db.Column(db.Integer, default=0,
                                     comment="Reset by the next successful run")
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def cron_expression(self) -> str:
        cfg = self.schedule_config or {}
        return f"{cfg.get('minute', '0')} {cfg.get('hour', '0')} * * *"

    def record_run(self, *, status, duration_ms, result=None, error=None):
        self.last_run_at = _utcnow()
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == "failed":
            self.failure_count = (self.failure_count or 0) + 1
            self.consecutive_failures = (self.consecutive_failures or 0) + 1
            self.last_error = error
        else:
            self.consecutive_failures = 0

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "schedule_config": self.schedule_config,
            "cron": self.cron_expression,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "failure_count": self.failure_count,
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} [{self.status}]>"
