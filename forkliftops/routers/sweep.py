from fastapi import APIRouter, Depends
from pydantic import BaseModel

from forkliftops.core.authorization import Permission, require_permission
from forkliftops.services.sweep_service import run_sweep

router = APIRouter(prefix="/sweep", tags=["Sweep"])


class SweepResponse(BaseModel):
    escalated: int
    no_response_alerts: int
    auto_completed: int
    conflicts: int


@router.post("/run", response_model=SweepResponse)
def trigger_sweep(_role=Depends(require_permission(Permission.RUN_SWEEP))):
    result = run_sweep()
    return {
        "escalated": result.escalated,
        "no_response_alerts": result.no_response_alerts,
        "auto_completed": result.auto_completed,
        "conflicts": result.conflicts,
    }
