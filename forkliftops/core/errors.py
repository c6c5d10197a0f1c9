from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple


class RejectionKind(Enum):
    INVALID_TRANSITION = "InvalidTransition"
    UNAUTHORIZED = "Unauthorized"
    PRECONDITION_FAILED = "PreconditionFailed"
    CONFLICT = "Conflict"
    VALIDATION_ERROR = "ValidationError"


@dataclass(frozen=True)
class Rejection:
    kind: RejectionKind
    message: str
    missing: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "missing": list(self.missing),
        }


def invalid_transition(message: str) -> Rejection:
    return Rejection(RejectionKind.INVALID_TRANSITION, message)


def unauthorized(message: str) -> Rejection:
    return Rejection(RejectionKind.UNAUTHORIZED, message)


def precondition_failed(message: str, missing=()) -> Rejection:
    return Rejection(RejectionKind.PRECONDITION_FAILED, message, tuple(missing))


def conflict(message: str) -> Rejection:
    return Rejection(RejectionKind.CONFLICT, message)


def validation_error(message: str) -> Rejection:
    return Rejection(RejectionKind.VALIDATION_ERROR, message)


# HTTP mapping used by the routers.
HTTP_STATUS = {
    RejectionKind.INVALID_TRANSITION: 409,
    RejectionKind.UNAUTHORIZED: 403,
    RejectionKind.PRECONDITION_FAILED: 422,
    RejectionKind.CONFLICT: 409,
    RejectionKind.VALIDATION_ERROR: 400,
}


class JobTransitionError(ValueError):
    """Raised by the host service layer when the engine rejects an action."""

    def __init__(self, rejection: Rejection):
        super().__init__(rejection.message)
        self.rejection = rejection


class JobNotFoundError(LookupError):
    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id
