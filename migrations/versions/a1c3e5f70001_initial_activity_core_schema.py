"""initial_activity_core_schema

Creates the activity core tables:
  - entities / entity_relations   — people and organizations (read-only here)
  - activities                    — hierarchy with materialized path + version
  - activity_members              — entity roles on activities
  - commitments                   — obligations, optionally tied to an activity
  - data_quality_reports          — audit snapshots
  - scheduled_jobs                — job registry and run history

Tables are created conditionally so the revision can be stamped onto a
database that already received them via db.create_all().

Revision ID: a1c3e5f70001
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1c3e5f70001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    existing = set(sa_inspect(bind).get_table_names())

    # ── Entities ──────────────────────────────────────────────────────────
    if "entities" not in existing:
        op.create_table(
            "entities",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=500), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False,
                      server_default="person",
                      comment="person, organization, place, other"),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_entities_name", "entities", ["name"])

    if "entity_relations" not in existing:
        op.create_table(
            "entity_relations",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("source_entity_id", sa.String(length=36), nullable=False),
            sa.Column("target_entity_id", sa.String(length=36), nullable=False),
            sa.Column("relation_type", sa.String(length=50), nullable=False),
            sa.Column("source", sa.String(length=20), nullable=False,
                      server_default="manual", comment="manual, extracted, inferred"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["source_entity_id"], ["entities.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["target_entity_id"], ["entities.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )

    # ── Activities ────────────────────────────────────────────────────────
    if "activities" not in existing:
        op.create_table(
            "activities",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=500), nullable=False),
            sa.Column("activity_type", sa.String(length=30), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("priority", sa.String(length=20), nullable=True),
            sa.Column("context", sa.String(length=30), nullable=True),
            sa.Column("parent_id", sa.String(length=36), nullable=True),
            sa.Column("depth", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("materialized_path", sa.Text(), nullable=True,
                      comment="Ancestor ids joined by '/', excluding self"),
            sa.Column("owner_entity_id", sa.String(length=36), nullable=True),
            sa.Column("client_entity_id", sa.String(length=36), nullable=True),
            sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
            sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("recurrence_rule", sa.String(length=255), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("tags", sa.JSON(), nullable=True),
            sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("embedding_json", sa.Text(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["parent_id"], ["activities.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["owner_entity_id"], ["entities.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["client_entity_id"], ["entities.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_activities_parent_id", "activities", ["parent_id"])
        op.create_index("ix_activities_materialized_path", "activities", ["materialized_path"])
        op.create_index("ix_activities_client_entity_id", "activities", ["client_entity_id"])
        op.create_index("ix_activities_deleted_at", "activities", ["deleted_at"])
        op.create_index("idx_activity_type_status", "activities", ["activity_type", "status"])
        op.create_index("idx_activity_owner_type", "activities",
                        ["owner_entity_id", "activity_type"])

    if "activity_members" not in existing:
        op.create_table(
            "activity_members",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("activity_id", sa.String(length=36), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="member"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("joined_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["activity_id"], ["activities.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["entity_id"], ["entities.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("activity_id", "entity_id", "role",
                                name="uq_activity_member_role"),
        )
        op.create_index("ix_activity_members_activity_id", "activity_members", ["activity_id"])
        op.create_index("ix_activity_members_entity_id", "activity_members", ["entity_id"])

    # ── Commitments ───────────────────────────────────────────────────────
    if "commitments" not in existing:
        op.create_table(
            "commitments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("from_entity_id", sa.String(length=36), nullable=True),
            sa.Column("to_entity_id", sa.String(length=36), nullable=True),
            sa.Column("activity_id", sa.String(length=36), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("embedding_json", sa.Text(), nullable=True),
            *_timestamps(),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["from_entity_id"], ["entities.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["to_entity_id"], ["entities.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["activity_id"], ["activities.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_commitments_activity_id", "commitments", ["activity_id"])
        op.create_index("ix_commitments_deleted_at", "commitments", ["deleted_at"])

    # ── Data quality reports ──────────────────────────────────────────────
    if "data_quality_reports" not in existing:
        op.create_table(
            "data_quality_reports",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("report_date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("metrics", sa.JSON(), nullable=False),
            sa.Column("issues", sa.JSON(), nullable=False),
            sa.Column("resolutions", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending",
                      comment="pending, reviewed, resolved"),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_data_quality_reports_report_date", "data_quality_reports",
                        ["report_date"])

    # ── Scheduled jobs ────────────────────────────────────────────────────
    if "scheduled_jobs" not in existing:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("schedule_config", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("failure_count", sa.Integer(), nullable=True),
            sa.Column("consecutive_failures", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


def downgrade():
    for table in (
        "scheduled_jobs",
        "data_quality_reports",
        "commitments",
        "activity_members",
        "activities",
        "entity_relations",
        "entities",
    ):
        op.drop_table(table)
