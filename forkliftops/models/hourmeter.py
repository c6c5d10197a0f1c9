from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, false, func

from forkliftops.core.clock import utcnow
from forkliftops.database import Base, JSONType


class HourmeterReading(Base):
    """Per-forklift reading history, written when a job reading reaches the asset."""

    __tablename__ = "hourmeter_readings"

    id = Column(Integer, primary_key=True, index=True)

    forklift_id = Column(String, nullable=False, index=True)
    job_id = Column(String, nullable=True, index=True)

    reading = Column(Float, nullable=False)
    is_amendment = Column(Boolean, nullable=False, default=False, server_default=false())

    recorded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())


class HourmeterAmendmentRecord(Base):
    __tablename__ = "hourmeter_amendments"

    id = Column(Integer, primary_key=True, index=True)

    job_id = Column(String, nullable=False, index=True)
    forklift_id = Column(String, nullable=True, index=True)

    original_reading = Column(Float, nullable=True)
    amended_reading = Column(Float, nullable=False)
    justification = Column(String, nullable=False)
    flag_reasons = Column(JSONType, nullable=False, default=list)

    approved_by_id = Column(String, nullable=False)
    approved_at = Column(DateTime(timezone=True), nullable=False)
