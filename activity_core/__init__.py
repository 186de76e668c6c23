"""
Activity Core
Flask Application Factory.

Usage:
    from activity_core import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import json
import logging
import os

import click
from flask import Flask
from flask_migrate import Migrate
from sqlalchemy import event
from sqlalchemy.engine import Engine

from activity_core.config import config
from activity_core.core.exceptions import ConflictError, NotFoundError, ValidationError
from activity_core.middleware.logging_config import configure_logging
from activity_core.models import db

logger = logging.getLogger(__name__)

migrate = Migrate()


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


@event.listens_for(Engine, "connect")
def _sqlite_connection_setup(dbapi_conn, _record):
    if "sqlite" not in type(dbapi_conn).__module__:
        return
    # ON DELETE SET NULL / CASCADE on activities need this under SQLite
    dbapi_conn.execute("PRAGMA foreign_keys=ON")
    # SQLite's built-in lower() folds ASCII only
    dbapi_conn.create_function("lower", 1, _unicode_lower, deterministic=True)


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(NotFoundError)
    def _not_found(e):
        return {"error": str(e), "resource": e.resource}, 404

    @app.errorhandler(ValidationError)
    def _invalid(e):
        return {"error": str(e), "details": e.details}, 422

    @app.errorhandler(ConflictError)
    def _conflict(e):
        return {"error": str(e), "field": e.field}, 409


def _register_cli(app: Flask) -> None:
    @app.cli.command("audit")
    def audit_cmd():
        """Run a data-quality audit and print the stored report."""
        from activity_core.services.data_quality_service import run_full_audit
        report = run_full_audit()
        _echo_json(report.to_dict())

    @app.cli.command("merge-duplicates")
    def merge_duplicates_cmd():
        """Merge every exact-name duplicate group into its best keeper."""
        from activity_core.services.merge_service import auto_merge_all_duplicates
        _echo_json(auto_merge_all_duplicates())

    @app.cli.command("assign-orphans")
    def assign_orphans_cmd():
        """Attach parentless tasks to a project."""
        from activity_core.services.orphan_resolution import auto_assign_orphaned_tasks
        _echo_json(auto_assign_orphaned_tasks())

    @app.cli.command("resolve-clients")
    def resolve_clients_cmd():
        """Fill in missing client entities on projects."""
        from activity_core.services.client_resolution import auto_resolve_clients
        _echo_json(auto_resolve_clients())

    @app.cli.command("list-jobs")
    def list_jobs_cmd():
        """Print a crontab line per registered job."""
        from activity_core.services.scheduler_service import SchedulerService
        SchedulerService.ensure_jobs_registered()
        for job in SchedulerService.list_jobs():
            record = job["db_record"] or {}
            state = record.get("status", "unregistered")
            click.echo(f"{job['cron']}  flask run-job {job['job_name']}  # {state}")

    @app.cli.command("run-job")
    @click.argument("name")
    def run_job_cmd(name):
        """Run a registered scheduled job now, even if it is disabled."""
        from activity_core.services.scheduler_service import SchedulerService
        SchedulerService.ensure_jobs_registered()
        result = SchedulerService.run_job(name, force=True)
        _echo_json(result)
        if result["status"] not in ("success", "skipped"):
            raise SystemExit(1)


def _init_database(app: Flask) -> None:
    db.init_app(app)
    migrate.init_app(app, db)

    # Mapper registration for create_all() and Alembic autogenerate
    from activity_core.models import activity, commitment, data_quality, entity, scheduling  # noqa: F401

    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if uri.startswith("sqlite:///") and ":memory:" not in uri:
        os.makedirs(os.path.dirname(uri[len("sqlite:///"):]), exist_ok=True)

    with app.app_context():
        try:
            db.create_all()
        except Exception as exc:
            logger.warning("create_all failed, run `flask db upgrade`: %s", exc)


def _init_scheduler(app: Flask) -> None:
    from activity_core.services import scheduled_jobs  # noqa: F401  (registers jobs)
    from activity_core.services.scheduler_service import SchedulerService

    SchedulerService.init_app(app)


def create_app(config_name=None):
    """
    Build the activity core app.

    Args:
        config_name: "development", "testing" or "production"; APP_ENV when
            omitted, falling back to development.
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    configure_logging(app)
    _init_database(app)
    _register_error_handlers(app)
    _register_cli(app)
    _init_scheduler(app)

    logger.debug("Activity core app created (config=%s)", config_name)
    return app
