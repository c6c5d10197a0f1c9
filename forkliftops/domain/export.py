from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ExportStatus(Enum):
    PENDING = "pending"
    EXPORTED = "exported"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_EXPORT_STATUSES = frozenset({ExportStatus.PENDING, ExportStatus.EXPORTED})
TERMINAL_EXPORT_STATUSES = frozenset({ExportStatus.EXPORTED, ExportStatus.CANCELLED})


@dataclass(frozen=True)
class ExportRecord:
    """One AutoCount invoice export attempt sequence for an invoiced job."""

    export_id: str
    job_id: str
    customer_id: str
    status: ExportStatus
    created_at: datetime
    total_amount: float
    currency: str = "MYR"
    line_items: Tuple[Dict[str, Any], ...] = field(default_factory=tuple)
    retry_count: int = 0
    export_error: Optional[str] = None
    autocount_invoice_number: Optional[str] = None
    exported_at: Optional[datetime] = None
    last_retry_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_EXPORT_STATUSES
