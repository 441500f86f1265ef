from fastapi import APIRouter, Depends, HTTPException, Request

from ticketflow.api.errors import http_error
from ticketflow.dependencies.auth import CurrentIdentity, Role, role_required
from ticketflow.lifecycle.errors import DatabaseError
from ticketflow.services.postgres import database_errors

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health check")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/database",
    summary="Database connectivity check",
    dependencies=[Depends(role_required(Role.ADMIN))],
)
async def ping_database(request: Request, identity: CurrentIdentity) -> dict[str, str]:
    tester = getattr(request.app.state, "postgres_tester", None)
    if tester is None:
        raise HTTPException(status_code=503, detail="Database is not configured")
    try:
        with database_errors("ping"):
            await tester.test_connection()
    except DatabaseError as exc:
        raise http_error(exc) from exc
    return {"status": "ok", "user": identity.id}
