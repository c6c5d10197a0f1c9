from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from forkliftops.core.authorization import Permission, require_permission
from forkliftops.core.errors import JobNotFoundError, JobTransitionError
from forkliftops.deps.errors import to_http_exception
from forkliftops.schemas.export import ExportResponse, export_to_response
from forkliftops.services import autocount_export_service

router = APIRouter(tags=["Exports"])


@router.post("/jobs/{job_id}/exports", response_model=ExportResponse)
def create_export(job_id: str, _role=Depends(require_permission(Permission.EXPORT_INVOICE))):
    try:
        record = autocount_export_service.create_export_for_job(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc
    except JobTransitionError as exc:
        raise to_http_exception(exc) from exc
    return export_to_response(record)


@router.get("/exports", response_model=List[ExportResponse])
def list_exports(
    job_id: Optional[str] = None,
    status: Optional[str] = None,
    _role=Depends(require_permission(Permission.EXPORT_INVOICE)),
):
    try:
        records = autocount_export_service.list_exports(job_id=job_id, status=status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [export_to_response(r) for r in records]


@router.post("/exports/{export_id}/retry", response_model=ExportResponse)
def retry_export(export_id: str, _role=Depends(require_permission(Permission.EXPORT_INVOICE))):
    try:
        record = autocount_export_service.retry_export(export_id)
    except JobTransitionError as exc:
        raise to_http_exception(exc) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return export_to_response(record)


@router.post("/exports/{export_id}/cancel", response_model=ExportResponse)
def cancel_export(export_id: str, _role=Depends(require_permission(Permission.EXPORT_INVOICE))):
    try:
        record = autocount_export_service.cancel_export(export_id)
    except JobTransitionError as exc:
        raise to_http_exception(exc) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return export_to_response(record)
