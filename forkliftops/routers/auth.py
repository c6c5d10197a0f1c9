import os
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from forkliftops.core.authorization import parse_role
from forkliftops.services.auth_service import create_access_token

router = APIRouter(prefix="/auth", tags=["auth"])


class TokenRequest(BaseModel):
    user_id: str
    role: str
    name: Optional[str] = None


@router.post("/token")
def issue_token(payload: TokenRequest):
    # development token issuer; real deployments sit behind an identity provider
    env = os.getenv("ENV", "dev").lower()
    if env not in {"dev", "local", "test"}:
        raise HTTPException(status_code=404, detail="Not Found")

    try:
        role = parse_role(payload.role)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown role: {payload.role}") from exc

    try:
        token = create_access_token(user_id=str(payload.user_id), role=role.value, name=payload.name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {
        "access_token": token,
        "token_type": "bearer",
    }
