from sqlalchemy import Column, DateTime, Float, Index, Integer, String, text

from forkliftops.database import Base, JSONType

_ACTIVE = text("status IN ('pending', 'exported')")


class AutoCountExport(Base):
    __tablename__ = "autocount_exports"

    id = Column(String, primary_key=True, index=True)

    job_id = Column(String, nullable=False, index=True)
    customer_id = Column(String, nullable=False)

    status = Column(String, nullable=False, index=True)  # pending|exported|failed|cancelled
    retry_count = Column(Integer, nullable=False, default=0, server_default="0")
    export_error = Column(String, nullable=True)
    autocount_invoice_number = Column(String, nullable=True)

    line_items = Column(JSONType, nullable=False, default=list)
    total_amount = Column(Float, nullable=False)
    currency = Column(String, nullable=False, default="MYR", server_default="MYR")

    created_at = Column(DateTime(timezone=True), nullable=False)
    exported_at = Column(DateTime(timezone=True), nullable=True)
    last_retry_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # one pending/exported record per job
        Index(
            "uq_autocount_exports_active_job",
            "job_id",
            unique=True,
            postgresql_where=_ACTIVE,
            sqlite_where=_ACTIVE,
        ),
    )
