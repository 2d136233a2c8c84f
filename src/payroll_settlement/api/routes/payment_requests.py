"""Payment request endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status
from fastapi.responses import JSONResponse

from payroll_settlement.api.dependencies import AdminId, OrganizationId, ServicesDep, WorkerId
from payroll_settlement.api.responses import dump, respond
from payroll_settlement.api.schemas import (
    ExternalPaymentRequest,
    FailPaymentRequest,
    FinalizeResponse,
    PaymentRequestCreate,
    PaymentRequestCreatedResponse,
    PaymentRequestResponse,
    TimeApplicationResponse,
)
from payroll_settlement.errors import run_operation
from payroll_settlement.models.enums import PaymentRequestStatus

router = APIRouter(prefix="/payment-requests", tags=["payment-requests"])


# ============================================================================
# Worker endpoints
# ============================================================================


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_payment_request(
    services: ServicesDep,
    worker_id: WorkerId,
    payload: PaymentRequestCreate,
) -> JSONResponse:
    """Bundle approved applications into a PENDING payout at a locked rate."""

    async def operation():
        created = await services.payment_requests.create_payment_request(
            worker_id, payload.application_ids, payload.crypto_type
        )
        return dump(PaymentRequestCreatedResponse, created)

    return respond(await run_operation(operation()), status.HTTP_201_CREATED)


@router.get("")
async def list_worker_payment_requests(services: ServicesDep, worker_id: WorkerId) -> JSONResponse:
    async def operation():
        requests = await services.payment_requests.get_worker_payment_requests(worker_id)
        return dump(PaymentRequestResponse, requests)

    return respond(await run_operation(operation()))


@router.get("/approved-applications")
async def list_approved_applications(services: ServicesDep, worker_id: WorkerId) -> JSONResponse:
    """Applications that can still join a payment request."""

    async def operation():
        applications = await services.payment_requests.get_approved_applications(worker_id)
        return dump(TimeApplicationResponse, applications)

    return respond(await run_operation(operation()))


# ============================================================================
# Administrator endpoints
# ============================================================================


@router.get("/organization")
async def list_organization_payment_requests(
    services: ServicesDep,
    organization_id: OrganizationId,
    status_filter: Annotated[PaymentRequestStatus | None, Query(alias="status")] = None,
) -> JSONResponse:
    async def operation():
        requests = await services.payment_requests.get_organization_payment_requests(
            organization_id, status_filter
        )
        return dump(PaymentRequestResponse, requests)

    return respond(await run_operation(operation()))


@router.post("/{payment_request_id}/execute")
async def execute_payment(
    services: ServicesDep,
    organization_id: OrganizationId,
    admin_id: AdminId,
    payment_request_id: Annotated[UUID, Path()],
) -> JSONResponse:
    """Sign and submit the payout from the organization's custodial wallet."""

    async def operation():
        request = await services.payment_requests.complete_custodial_payment(
            payment_request_id, organization_id, admin_id
        )
        return dump(PaymentRequestResponse, request)

    return respond(await run_operation(operation()))


@router.post("/{payment_request_id}/complete-external")
async def complete_external_payment(
    services: ServicesDep,
    organization_id: OrganizationId,
    admin_id: AdminId,
    payment_request_id: Annotated[UUID, Path()],
    payload: ExternalPaymentRequest,
) -> JSONResponse:
    """Record a payout signed outside the system (manual-signing wallets)."""

    async def operation():
        request = await services.payment_requests.complete_external_payment(
            payment_request_id, payload.transaction_hash, organization_id, admin_id
        )
        return dump(PaymentRequestResponse, request)

    return respond(await run_operation(operation()))


@router.post("/{payment_request_id}/fail")
async def fail_payment(
    services: ServicesDep,
    organization_id: OrganizationId,
    admin_id: AdminId,
    payment_request_id: Annotated[UUID, Path()],
    payload: FailPaymentRequest,
) -> JSONResponse:
    async def operation():
        request = await services.payment_requests.mark_payment_failed(
            payment_request_id,
            payload.reason,
            payload.code,
            admin_id=admin_id,
            organization_id=organization_id,
        )
        return dump(PaymentRequestResponse, request)

    return respond(await run_operation(operation()))


@router.post("/{payment_request_id}/reconcile")
async def reconcile_payment(
    services: ServicesDep,
    organization_id: OrganizationId,
    payment_request_id: Annotated[UUID, Path()],
) -> JSONResponse:
    """Write any completion records missing for a COMPLETED request."""

    async def operation():
        result = await services.payment_requests.reconcile_completed_payment(
            payment_request_id, organization_id
        )
        return dump(FinalizeResponse, result)

    return respond(await run_operation(operation()))
