from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from ticketflow.dependencies.auth import Identity, Role, role_required
from ticketflow.lifecycle.service import LifecycleService
from ticketflow.settlement.workflow import SettlementWorkflow
from ticketflow.timeline.service import TimelineService

require_organizer = role_required(Role.ORGANIZER)
require_viewer = role_required(Role.VIEWER)
require_admin = role_required(Role.ADMIN)

OrganizerIdentity = Annotated[Identity, Depends(require_organizer)]
ViewerIdentity = Annotated[Identity, Depends(require_viewer)]
AdminIdentity = Annotated[Identity, Depends(require_admin)]


def _from_state(request: Request, name: str, label: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{label} is not configured")
    return service


async def get_lifecycle_service(request: Request) -> LifecycleService:
    return _from_state(request, "lifecycle_service", "Lifecycle service")


async def get_timeline_service(request: Request) -> TimelineService:
    return _from_state(request, "timeline_service", "Timeline service")


async def get_settlement_workflow(request: Request) -> SettlementWorkflow:
    return _from_state(request, "settlement_workflow", "Settlement workflow")


async def get_correlation_id(
    x_correlation_id: Annotated[str | None, Header(alias="X-Correlation-ID")] = None,
) -> str | None:
    """Caller-supplied correlation id used to chain multi-step flows."""

    if x_correlation_id is None:
        return None
    return x_correlation_id.strip() or None


LifecycleServiceDep = Annotated[LifecycleService, Depends(get_lifecycle_service)]
TimelineServiceDep = Annotated[TimelineService, Depends(get_timeline_service)]
SettlementWorkflowDep = Annotated[SettlementWorkflow, Depends(get_settlement_workflow)]
CorrelationId = Annotated[str | None, Depends(get_correlation_id)]
