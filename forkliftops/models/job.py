from sqlalchemy import Boolean, Column, DateTime, Float, Index, Integer, String, false, func

from forkliftops.core.clock import utcnow
from forkliftops.database import Base, JSONType


class Job(Base):
    __tablename__ = "jobs"

    id = Column(String, primary_key=True, index=True)

    customer_id = Column(String, nullable=False, index=True)
    forklift_id = Column(String, nullable=True, index=True)
    title = Column(String, nullable=False, default="")
    description = Column(String, nullable=False, default="")
    created_by_id = Column(String, nullable=True)

    job_type = Column(String, nullable=False, index=True)
    priority = Column(String, nullable=False, default="Medium")
    status = Column(String, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    repair_start_time = Column(DateTime(timezone=True), nullable=True)
    repair_end_time = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cutoff_time = Column(DateTime(timezone=True), nullable=True)

    assigned_technician_id = Column(String, nullable=True, index=True)
    assigned_by_id = Column(String, nullable=True)
    technician_accepted_at = Column(DateTime(timezone=True), nullable=True)
    technician_rejected_at = Column(DateTime(timezone=True), nullable=True)
    technician_rejection_reason = Column(String, nullable=True)
    technician_response_deadline = Column(DateTime(timezone=True), nullable=True)
    no_response_alerted_at = Column(DateTime(timezone=True), nullable=True)

    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    acknowledged_by_id = Column(String, nullable=True)
    sla_target_minutes = Column(Integer, nullable=True)
    escalation_triggered_at = Column(DateTime(timezone=True), nullable=True)
    escalation_resolved_at = Column(DateTime(timezone=True), nullable=True)
    escalation_resolution = Column(String, nullable=True)

    hourmeter_reading = Column(Float, nullable=True)
    hourmeter_previous = Column(Float, nullable=True)
    first_hourmeter_recorded_by_id = Column(String, nullable=True)
    first_hourmeter_recorded_at = Column(DateTime(timezone=True), nullable=True)
    hourmeter_flagged = Column(Boolean, nullable=False, default=False, server_default=false())
    hourmeter_flag_reasons = Column(JSONType, nullable=False, default=list)
    hourmeter_invalidated = Column(Boolean, nullable=False, default=False, server_default=false())
    hourmeter_amendment = Column(JSONType, nullable=True)

    condition_checklist = Column(JSONType, nullable=False, default=dict)
    checklist_template = Column(String, nullable=False, default="minor_service")
    checklist_used_check_all = Column(Boolean, nullable=False, default=False, server_default=false())
    checklist_override = Column(JSONType, nullable=True)

    service_upgrade_prompt = Column(JSONType, nullable=True)
    service_upgrade_decision = Column(String, nullable=True)

    technician_signature = Column(JSONType, nullable=True)
    customer_signature = Column(JSONType, nullable=True)
    media = Column(JSONType, nullable=False, default=list)

    verification_type = Column(String, nullable=True)
    deferred_reason = Column(String, nullable=True)
    evidence_media_ids = Column(JSONType, nullable=False, default=list)
    customer_notified_at = Column(DateTime(timezone=True), nullable=True)
    customer_response_deadline = Column(DateTime(timezone=True), nullable=True)
    auto_completed_at = Column(DateTime(timezone=True), nullable=True)
    disputed_at = Column(DateTime(timezone=True), nullable=True)
    dispute_notes = Column(String, nullable=True)

    parts_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    parts_confirmed_by_id = Column(String, nullable=True)
    parts_confirmed_by_name = Column(String, nullable=True)
    parts_confirmation_notes = Column(String, nullable=True)
    parts_confirmation_skipped = Column(Boolean, nullable=False, default=False, server_default=false())
    job_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    job_confirmed_by_id = Column(String, nullable=True)
    job_confirmed_by_name = Column(String, nullable=True)
    job_confirmation_notes = Column(String, nullable=True)

    parts_used = Column(JSONType, nullable=False, default=list)
    labor_cost = Column(Float, nullable=False, default=150.0)
    extra_charges = Column(JSONType, nullable=False, default=list)
    invoiced_at = Column(DateTime(timezone=True), nullable=True)
    invoiced_by_id = Column(String, nullable=True)

    requests = Column(JSONType, nullable=False, default=list)

    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by_id = Column(String, nullable=True)
    deletion_reason = Column(String, nullable=True)
    hourmeter_before_delete = Column(Float, nullable=True)

    # compare-and-swap token; bumped on every committed transition
    version = Column(Integer, nullable=False, default=0, server_default="0")
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        Index("ix_jobs_status_type", "status", "job_type"),
        Index("ix_jobs_technician_status", "assigned_technician_id", "status"),
    )
