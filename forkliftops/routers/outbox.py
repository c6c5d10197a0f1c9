from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from forkliftops.core.authorization import Permission, require_permission
from forkliftops.database import SessionLocal
from forkliftops.models.event_outbox import EventOutbox

router = APIRouter(prefix="/outbox", tags=["Outbox"])


class OutboxRow(BaseModel):
    id: int
    aggregate_id: str
    event_type: str
    processed: bool
    retry_count: int
    last_error: Optional[str]
    created_at: str
    processed_at: Optional[str]


class OutboxListResponse(BaseModel):
    limit: int
    offset: int
    rows: list[OutboxRow]


@router.get("", response_model=OutboxListResponse)
def list_outbox(
    processed: Optional[bool] = None,
    job_id: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=1_000_000),
    _role=Depends(require_permission(Permission.VIEW_OUTBOX)),
):
    db: Session = SessionLocal()
    try:
        q = db.query(EventOutbox)

        if processed is not None:
            q = q.filter(EventOutbox.processed == bool(processed))
        if job_id is not None:
            q = q.filter(EventOutbox.aggregate_id == str(job_id))
        if event_type is not None:
            q = q.filter(EventOutbox.event_type == event_type.upper())

        rows = q.order_by(EventOutbox.id.asc()).limit(int(limit)).offset(int(offset)).all()

        return {
            "limit": int(limit),
            "offset": int(offset),
            "rows": [
                {
                    "id": r.id,
                    "aggregate_id": r.aggregate_id,
                    "event_type": r.event_type,
                    "processed": r.processed,
                    "retry_count": r.retry_count,
                    "last_error": r.last_error,
                    "created_at": r.created_at.isoformat(),
                    "processed_at": None if r.processed_at is None else r.processed_at.isoformat(),
                }
                for r in rows
            ],
        }
    finally:
        db.close()
