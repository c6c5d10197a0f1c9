from sqlalchemy import Boolean, Column, DateTime, Integer, String, false

from forkliftops.database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)

    job_id = Column(String, nullable=True, index=True)

    # exactly one recipient column is set per row
    user_id = Column(String, nullable=True, index=True)
    role = Column(String, nullable=True, index=True)
    customer_id = Column(String, nullable=True, index=True)

    notification_type = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False, server_default=false())

    source_event_id = Column(Integer, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
