"""job engine tables

Revision ID: 3c1f0a9d2b7e
Revises:
Create Date: 2026-10-18 09:12:44.501233
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "3c1f0a9d2b7e"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")
TS = sa.DateTime(timezone=True)


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, TS, nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "jobs",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("forklift_id", sa.String(), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("created_by_id", sa.String(), nullable=True),
        sa.Column("job_type", sa.String(), nullable=False),
        sa.Column("priority", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        _ts("created_at", nullable=False),
        _ts("assigned_at"),
        _ts("started_at"),
        _ts("repair_start_time"),
        _ts("repair_end_time"),
        _ts("completed_at"),
        _ts("cutoff_time"),
        sa.Column("assigned_technician_id", sa.String(), nullable=True),
        sa.Column("assigned_by_id", sa.String(), nullable=True),
        _ts("technician_accepted_at"),
        _ts("technician_rejected_at"),
        sa.Column("technician_rejection_reason", sa.String(), nullable=True),
        _ts("technician_response_deadline"),
        _ts("no_response_alerted_at"),
        _ts("acknowledged_at"),
        sa.Column("acknowledged_by_id", sa.String(), nullable=True),
        sa.Column("sla_target_minutes", sa.Integer(), nullable=True),
        _ts("escalation_triggered_at"),
        _ts("escalation_resolved_at"),
        sa.Column("escalation_resolution", sa.String(), nullable=True),
        sa.Column("hourmeter_reading", sa.Float(), nullable=True),
        sa.Column("hourmeter_previous", sa.Float(), nullable=True),
        sa.Column("first_hourmeter_recorded_by_id", sa.String(), nullable=True),
        _ts("first_hourmeter_recorded_at"),
        sa.Column("hourmeter_flagged", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("hourmeter_flag_reasons", JSON, nullable=False),
        sa.Column("hourmeter_invalidated", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("hourmeter_amendment", JSON, nullable=True),
        sa.Column("condition_checklist", JSON, nullable=False),
        sa.Column("checklist_template", sa.String(), nullable=False),
        sa.Column("checklist_used_check_all", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("checklist_override", JSON, nullable=True),
        sa.Column("service_upgrade_prompt", JSON, nullable=True),
        sa.Column("service_upgrade_decision", sa.String(), nullable=True),
        sa.Column("technician_signature", JSON, nullable=True),
        sa.Column("customer_signature", JSON, nullable=True),
        sa.Column("media", JSON, nullable=False),
        sa.Column("verification_type", sa.String(), nullable=True),
        sa.Column("deferred_reason", sa.String(), nullable=True),
        sa.Column("evidence_media_ids", JSON, nullable=False),
        _ts("customer_notified_at"),
        _ts("customer_response_deadline"),
        _ts("auto_completed_at"),
        _ts("disputed_at"),
        sa.Column("dispute_notes", sa.String(), nullable=True),
        _ts("parts_confirmed_at"),
        sa.Column("parts_confirmed_by_id", sa.String(), nullable=True),
        sa.Column("parts_confirmed_by_name", sa.String(), nullable=True),
        sa.Column("parts_confirmation_notes", sa.String(), nullable=True),
        sa.Column("parts_confirmation_skipped", sa.Boolean(), server_default=sa.false(), nullable=False),
        _ts("job_confirmed_at"),
        sa.Column("job_confirmed_by_id", sa.String(), nullable=True),
        sa.Column("job_confirmed_by_name", sa.String(), nullable=True),
        sa.Column("job_confirmation_notes", sa.String(), nullable=True),
        sa.Column("parts_used", JSON, nullable=False),
        sa.Column("labor_cost", sa.Float(), nullable=False),
        sa.Column("extra_charges", JSON, nullable=False),
        _ts("invoiced_at"),
        sa.Column("invoiced_by_id", sa.String(), nullable=True),
        sa.Column("requests", JSON, nullable=False),
        _ts("deleted_at"),
        sa.Column("deleted_by_id", sa.String(), nullable=True),
        sa.Column("deletion_reason", sa.String(), nullable=True),
        sa.Column("hourmeter_before_delete", sa.Float(), nullable=True),
        sa.Column("version", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("updated_at", TS, server_default=sa.func.now(), nullable=False),
    )
    op.create_index(op.f("ix_jobs_id"), "jobs", ["id"], unique=False)
    op.create_index(op.f("ix_jobs_customer_id"), "jobs", ["customer_id"], unique=False)
    op.create_index(op.f("ix_jobs_forklift_id"), "jobs", ["forklift_id"], unique=False)
    op.create_index(op.f("ix_jobs_job_type"), "jobs", ["job_type"], unique=False)
    op.create_index(op.f("ix_jobs_status"), "jobs", ["status"], unique=False)
    op.create_index(op.f("ix_jobs_assigned_technician_id"), "jobs", ["assigned_technician_id"], unique=False)
    op.create_index("ix_jobs_status_type", "jobs", ["status", "job_type"], unique=False)
    op.create_index("ix_jobs_technician_status", "jobs", ["assigned_technician_id", "status"], unique=False)

    op.create_table(
        "forklifts",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("customer_id", sa.String(), nullable=True),
        sa.Column("serial_number", sa.String(), nullable=True),
        sa.Column("make", sa.String(), nullable=True),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("current_hourmeter", sa.Float(), nullable=True),
        _ts("hourmeter_updated_at"),
        sa.Column("average_daily_usage", sa.Float(), server_default=sa.text("8"), nullable=False),
        sa.Column("last_service_hourmeter", sa.Float(), nullable=True),
        _ts("last_service_at"),
        sa.Column("service_due", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("created_at", TS, server_default=sa.func.now(), nullable=False),
    )
    op.create_index(op.f("ix_forklifts_id"), "forklifts", ["id"], unique=False)
    op.create_index(op.f("ix_forklifts_customer_id"), "forklifts", ["customer_id"], unique=False)
    op.create_index(op.f("ix_forklifts_serial_number"), "forklifts", ["serial_number"], unique=False)

    op.create_table(
        "hourmeter_readings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("forklift_id", sa.String(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=True),
        sa.Column("reading", sa.Float(), nullable=False),
        sa.Column("is_amendment", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("recorded_at", TS, server_default=sa.func.now(), nullable=False),
    )
    op.create_index(op.f("ix_hourmeter_readings_id"), "hourmeter_readings", ["id"], unique=False)
    op.create_index(op.f("ix_hourmeter_readings_forklift_id"), "hourmeter_readings", ["forklift_id"], unique=False)
    op.create_index(op.f("ix_hourmeter_readings_job_id"), "hourmeter_readings", ["job_id"], unique=False)

    op.create_table(
        "hourmeter_amendments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("forklift_id", sa.String(), nullable=True),
        sa.Column("original_reading", sa.Float(), nullable=True),
        sa.Column("amended_reading", sa.Float(), nullable=False),
        sa.Column("justification", sa.String(), nullable=False),
        sa.Column("flag_reasons", JSON, nullable=False),
        sa.Column("approved_by_id", sa.String(), nullable=False),
        _ts("approved_at", nullable=False),
    )
    op.create_index(op.f("ix_hourmeter_amendments_id"), "hourmeter_amendments", ["id"], unique=False)
    op.create_index(op.f("ix_hourmeter_amendments_job_id"), "hourmeter_amendments", ["job_id"], unique=False)
    op.create_index(op.f("ix_hourmeter_amendments_forklift_id"), "hourmeter_amendments", ["forklift_id"], unique=False)

    op.create_table(
        "autocount_exports",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("retry_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("export_error", sa.String(), nullable=True),
        sa.Column("autocount_invoice_number", sa.String(), nullable=True),
        sa.Column("line_items", JSON, nullable=False),
        sa.Column("total_amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(), server_default="MYR", nullable=False),
        _ts("created_at", nullable=False),
        _ts("exported_at"),
        _ts("last_retry_at"),
        _ts("cancelled_at"),
    )
    op.create_index(op.f("ix_autocount_exports_id"), "autocount_exports", ["id"], unique=False)
    op.create_index(op.f("ix_autocount_exports_job_id"), "autocount_exports", ["job_id"], unique=False)
    op.create_index(op.f("ix_autocount_exports_status"), "autocount_exports", ["status"], unique=False)
    op.create_index(
        "uq_autocount_exports_active_job",
        "autocount_exports",
        ["job_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'exported')"),
        sqlite_where=sa.text("status IN ('pending', 'exported')"),
    )

    op.create_table(
        "job_audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=False),
        sa.Column("actor_role", sa.String(), nullable=False),
        sa.Column("from_status", sa.String(), nullable=True),
        sa.Column("to_status", sa.String(), nullable=True),
        sa.Column("details", JSON, nullable=False),
        sa.Column("source_event_id", sa.Integer(), nullable=True),
        _ts("created_at", nullable=False),
        sa.UniqueConstraint("source_event_id", name="uq_job_audit_log_source_event"),
    )
    op.create_index(op.f("ix_job_audit_log_id"), "job_audit_log", ["id"], unique=False)
    op.create_index(op.f("ix_job_audit_log_job_id"), "job_audit_log", ["job_id"], unique=False)
    op.create_index(op.f("ix_job_audit_log_action"), "job_audit_log", ["action"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("job_id", sa.String(), nullable=True),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=True),
        sa.Column("customer_id", sa.String(), nullable=True),
        sa.Column("notification_type", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("message", sa.String(), nullable=False),
        sa.Column("is_read", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("source_event_id", sa.Integer(), nullable=True),
        _ts("created_at", nullable=False),
    )
    op.create_index(op.f("ix_notifications_id"), "notifications", ["id"], unique=False)
    op.create_index(op.f("ix_notifications_job_id"), "notifications", ["job_id"], unique=False)
    op.create_index(op.f("ix_notifications_user_id"), "notifications", ["user_id"], unique=False)
    op.create_index(op.f("ix_notifications_role"), "notifications", ["role"], unique=False)
    op.create_index(op.f("ix_notifications_customer_id"), "notifications", ["customer_id"], unique=False)
    op.create_index(op.f("ix_notifications_notification_type"), "notifications", ["notification_type"], unique=False)
    op.create_index(op.f("ix_notifications_source_event_id"), "notifications", ["source_event_id"], unique=False)

    op.create_table(
        "event_outbox",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("aggregate_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("idempotency_key", sa.String(), nullable=False),
        sa.Column("payload", JSON, nullable=False),
        sa.Column("processed", sa.Boolean(), server_default=sa.false(), nullable=False),
        _ts("processed_at"),
        sa.Column("retry_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("last_error", sa.String(), nullable=True),
        sa.Column("created_at", TS, server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("event_type", "idempotency_key", name="uq_event_outbox_idempotency"),
    )
    op.create_index("ix_event_outbox_aggregate_event", "event_outbox", ["aggregate_id", "event_type"], unique=False)
    op.create_index("ix_event_outbox_processed", "event_outbox", ["processed", "created_at"], unique=False)
    op.create_index(op.f("ix_event_outbox_aggregate_id"), "event_outbox", ["aggregate_id"], unique=False)
    op.create_index(op.f("ix_event_outbox_event_type"), "event_outbox", ["event_type"], unique=False)


def downgrade() -> None:
    op.drop_table("event_outbox")
    op.drop_table("notifications")
    op.drop_table("job_audit_log")
    op.drop_index("uq_autocount_exports_active_job", table_name="autocount_exports")
    op.drop_table("autocount_exports")
    op.drop_table("hourmeter_amendments")
    op.drop_table("hourmeter_readings")
    op.drop_table("forklifts")
    op.drop_table("jobs")
