from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from forkliftops.domain.export import ExportRecord


class ExportResponse(BaseModel):
    export_id: str
    job_id: str
    customer_id: str
    status: str
    retry_count: int
    export_error: Optional[str]
    autocount_invoice_number: Optional[str]
    total_amount: float
    currency: str
    line_items: List[Dict[str, Any]]
    created_at: datetime
    exported_at: Optional[datetime]
    last_retry_at: Optional[datetime]
    cancelled_at: Optional[datetime]


def export_to_response(record: ExportRecord) -> Dict[str, Any]:
    return {
        "export_id": record.export_id,
        "job_id": record.job_id,
        "customer_id": record.customer_id,
        "status": record.status.value,
        "retry_count": record.retry_count,
        "export_error": record.export_error,
        "autocount_invoice_number": record.autocount_invoice_number,
        "total_amount": record.total_amount,
        "currency": record.currency,
        "line_items": [dict(i) for i in record.line_items],
        "created_at": record.created_at,
        "exported_at": record.exported_at,
        "last_retry_at": record.last_retry_at,
        "cancelled_at": record.cancelled_at,
    }
