from fastapi import HTTPException

from forkliftops.core.errors import HTTP_STATUS, JobTransitionError


def to_http_exception(exc: JobTransitionError) -> HTTPException:
    rejection = exc.rejection
    return HTTPException(status_code=HTTP_STATUS[rejection.kind], detail=rejection.to_dict())
