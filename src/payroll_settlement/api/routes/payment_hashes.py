"""Payment hash search and verification endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path
from fastapi.responses import JSONResponse

from payroll_settlement.api.dependencies import OrganizationId, ServicesDep, WorkerId
from payroll_settlement.api.responses import dump, respond
from payroll_settlement.api.schemas import PaymentHashLogResponse
from payroll_settlement.errors import run_operation

router = APIRouter(prefix="/payment-hashes", tags=["payment-hashes"])


@router.get("/worker/{data_hash}")
async def search_as_worker(
    services: ServicesDep,
    worker_id: WorkerId,
    data_hash: Annotated[str, Path()],
) -> JSONResponse:
    async def operation():
        logs = await services.payment_hashes.search_payment_hash_for_worker(data_hash, worker_id)
        return dump(PaymentHashLogResponse, logs)

    return respond(await run_operation(operation()))


@router.get("/organization/{data_hash}")
async def search_as_admin(
    services: ServicesDep,
    organization_id: OrganizationId,
    data_hash: Annotated[str, Path()],
) -> JSONResponse:
    async def operation():
        logs = await services.payment_hashes.search_payment_hash_for_admin(
            data_hash, organization_id
        )
        return dump(PaymentHashLogResponse, logs)

    return respond(await run_operation(operation()))


@router.post("/{log_id}/verify")
async def verify_hash_log(
    services: ServicesDep,
    organization_id: OrganizationId,
    log_id: Annotated[UUID, Path()],
) -> JSONResponse:
    """Recompute the digest of the stored canonical data."""

    async def operation():
        log = await services.payment_hashes.verify_payment_hash_log(log_id, organization_id)
        return dump(PaymentHashLogResponse, log)

    return respond(await run_operation(operation()))
