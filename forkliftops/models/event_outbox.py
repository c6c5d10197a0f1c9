from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Integer, String, false, func
from sqlalchemy.schema import Index, UniqueConstraint

from forkliftops.core.clock import utcnow
from forkliftops.database import Base, JSONType


class EventOutbox(Base):
    __tablename__ = "event_outbox"

    id = Column(Integer, primary_key=True)

    # job the effect belongs to
    aggregate_id = Column(String, nullable=False, index=True)

    event_type = Column(String, nullable=False, index=True)  # NOTIFY|AUDIT|EXPORT|ASSET_UPDATE
    idempotency_key = Column(String, nullable=False)

    payload = Column(JSONType, nullable=False)

    processed = Column(Boolean, nullable=False, default=False, server_default=false())
    processed_at = Column(DateTime(timezone=True), nullable=True)

    retry_count = Column(Integer, nullable=False, default=0, server_default="0")
    last_error = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "event_type",
            "idempotency_key",
            name="uq_event_outbox_idempotency",
        ),
        Index("ix_event_outbox_aggregate_event", "aggregate_id", "event_type"),
        Index("ix_event_outbox_processed", "processed", "created_at"),
    )
