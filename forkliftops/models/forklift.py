from sqlalchemy import Boolean, Column, DateTime, Float, String, false, func

from forkliftops.core.clock import utcnow
from forkliftops.database import Base


class Forklift(Base):
    __tablename__ = "forklifts"

    id = Column(String, primary_key=True, index=True)

    customer_id = Column(String, nullable=True, index=True)
    serial_number = Column(String, nullable=True, index=True)
    make = Column(String, nullable=True)
    model = Column(String, nullable=True)

    current_hourmeter = Column(Float, nullable=True)
    hourmeter_updated_at = Column(DateTime(timezone=True), nullable=True)
    average_daily_usage = Column(Float, nullable=False, default=8.0, server_default="8")

    last_service_hourmeter = Column(Float, nullable=True)
    last_service_at = Column(DateTime(timezone=True), nullable=True)
    service_due = Column(Boolean, nullable=False, default=False, server_default=false())

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
