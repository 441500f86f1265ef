from __future__ import annotations

from fastapi import HTTPException

from ticketflow.lifecycle.errors import DatabaseError, LifecycleError, TransitionError

STATUS_BY_CODE: dict[str, int] = {
    "ENTITY_NOT_FOUND": 404,
    "INVALID_TRANSITION": 409,
    "GUARD_FAILED": 422,
    "CONCURRENT_MODIFICATION": 409,
    "VERIFICATION_FAILED": 402,
    "DATABASE_ERROR": 500,
    "UNAUTHORIZED": 401,
    "CHAIN_RPC_ERROR": 502,
}


def http_error(exc: LifecycleError) -> HTTPException:
    """Translate a lifecycle error into an HTTP error carrying its structured detail."""

    status_code = STATUS_BY_CODE.get(exc.code, 500)
    if isinstance(exc, DatabaseError):
        detail = {"code": exc.code, "message": "Persistence failure", "retryable": False}
    elif isinstance(exc, TransitionError):
        detail = exc.to_dict()
    else:
        detail = {"code": exc.code, "message": str(exc), "retryable": exc.retryable}
    return HTTPException(status_code=status_code, detail=detail)
