"""Time application endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status
from fastapi.responses import JSONResponse

from payroll_settlement.api.dependencies import AdminId, OrganizationId, ServicesDep, WorkerId
from payroll_settlement.api.responses import dump, respond
from payroll_settlement.api.schemas import (
    ApplicationDetailResponse,
    RejectApplicationRequest,
    TimeApplicationCreate,
    TimeApplicationResponse,
)
from payroll_settlement.errors import run_operation
from payroll_settlement.models.enums import ApplicationStatus

router = APIRouter(prefix="/time-applications", tags=["time-applications"])


# ============================================================================
# Worker endpoints
# ============================================================================


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_time_application(
    services: ServicesDep,
    worker_id: WorkerId,
    payload: TimeApplicationCreate,
) -> JSONResponse:
    """Submit (or resubmit) an application over unclaimed timestamps."""

    async def operation():
        application = await services.applications.create_time_application(
            worker_id,
            payload.start_date,
            payload.end_date,
            payload.timestamp_ids,
            memo=payload.memo,
            original_application_id=payload.original_application_id,
        )
        return dump(TimeApplicationResponse, application)

    return respond(await run_operation(operation()), status.HTTP_201_CREATED)


@router.get("")
async def list_worker_applications(
    services: ServicesDep,
    worker_id: WorkerId,
    status_filter: Annotated[ApplicationStatus | None, Query(alias="status")] = None,
) -> JSONResponse:
    async def operation():
        applications = await services.applications.get_worker_applications(
            worker_id, status_filter.value if status_filter else None
        )
        return dump(TimeApplicationResponse, applications)

    return respond(await run_operation(operation()))


@router.delete("/{application_id}")
async def cancel_time_application(
    services: ServicesDep,
    worker_id: WorkerId,
    application_id: Annotated[UUID, Path()],
) -> JSONResponse:
    """Withdraw a PENDING application."""
    return respond(
        await run_operation(
            services.applications.cancel_time_application(application_id, worker_id)
        )
    )


# ============================================================================
# Administrator endpoints
# ============================================================================


@router.get("/organization")
async def list_organization_applications(
    services: ServicesDep,
    organization_id: OrganizationId,
    status_filter: Annotated[ApplicationStatus | None, Query(alias="status")] = None,
) -> JSONResponse:
    async def operation():
        applications = await services.applications.get_organization_applications(
            organization_id, status_filter.value if status_filter else None
        )
        return dump(TimeApplicationResponse, applications)

    return respond(await run_operation(operation()))


@router.get("/{application_id}")
async def get_application_detail(
    services: ServicesDep,
    organization_id: OrganizationId,
    application_id: Annotated[UUID, Path()],
) -> JSONResponse:
    async def operation():
        detail = await services.applications.get_application_detail(
            application_id, organization_id
        )
        return dump(ApplicationDetailResponse, detail)

    return respond(await run_operation(operation()))


@router.post("/{application_id}/approve")
async def approve_application(
    services: ServicesDep,
    organization_id: OrganizationId,
    admin_id: AdminId,
    application_id: Annotated[UUID, Path()],
) -> JSONResponse:
    """Approve at the worker's current rate."""

    async def operation():
        application = await services.applications.approve_application(
            application_id, organization_id, admin_id
        )
        return dump(TimeApplicationResponse, application)

    return respond(await run_operation(operation()))


@router.post("/{application_id}/reject")
async def reject_application(
    services: ServicesDep,
    organization_id: OrganizationId,
    admin_id: AdminId,
    application_id: Annotated[UUID, Path()],
    payload: RejectApplicationRequest,
) -> JSONResponse:
    async def operation():
        application = await services.applications.reject_application(
            application_id, organization_id, admin_id, payload.reason, payload.category
        )
        return dump(TimeApplicationResponse, application)

    return respond(await run_operation(operation()))
