from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from forkliftops.database import Base, JSONType


class JobAuditLog(Base):
    __tablename__ = "job_audit_log"

    __table_args__ = (UniqueConstraint("source_event_id", name="uq_job_audit_log_source_event"),)

    id = Column(Integer, primary_key=True, index=True)

    job_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False, index=True)
    actor_id = Column(String, nullable=False)
    actor_role = Column(String, nullable=False)
    from_status = Column(String, nullable=True)
    to_status = Column(String, nullable=True)
    details = Column(JSONType, nullable=False, default=dict)

    # outbox row that produced this entry
    source_event_id = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
