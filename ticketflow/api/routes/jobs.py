from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from ticketflow.api.errors import http_error
from ticketflow.dependencies.lifecycle import AdminIdentity
from ticketflow.jobs.scheduler import LifecycleScheduler
from ticketflow.lifecycle.errors import LifecycleError

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _scheduler(request: Request) -> LifecycleScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler is not configured")
    return scheduler


@router.post("/run", summary="Run every due lifecycle job once")
async def run_jobs(request: Request, _: AdminIdentity) -> dict[str, Any]:
    scheduler = _scheduler(request)
    try:
        results = await scheduler.run_once()
    except LifecycleError as exc:
        raise http_error(exc) from exc
    return {job: result.to_dict() for job, result in results.items()}
