"""Work timestamp endpoints."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status
from fastapi.responses import JSONResponse

from payroll_settlement.api.dependencies import ServicesDep, WorkerId
from payroll_settlement.api.responses import dump, respond
from payroll_settlement.api.schemas import (
    TimestampCreate,
    TimestampUpdate,
    WorkTimestampLogResponse,
    WorkTimestampResponse,
)
from payroll_settlement.errors import run_operation

router = APIRouter(prefix="/timestamps", tags=["timestamps"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_timestamp(
    services: ServicesDep,
    worker_id: WorkerId,
    payload: TimestampCreate,
) -> JSONResponse:
    """Record a WORK, REST or END event."""

    async def operation():
        event = await services.timestamps.create_work_timestamp(
            worker_id, payload.status, payload.timestamp, payload.memo
        )
        return dump(WorkTimestampResponse, event)

    return respond(await run_operation(operation()), status.HTTP_201_CREATED)


@router.get("")
async def list_timestamps(
    services: ServicesDep,
    worker_id: WorkerId,
    start: Annotated[datetime, Query()],
    end: Annotated[datetime, Query()],
) -> JSONResponse:
    """Events in ``[start, end)``, oldest first."""

    async def operation():
        events = await services.timestamps.get_timestamps_by_period(worker_id, start, end)
        return dump(WorkTimestampResponse, events)

    return respond(await run_operation(operation()))


@router.patch("/{timestamp_id}")
async def update_timestamp(
    services: ServicesDep,
    worker_id: WorkerId,
    timestamp_id: Annotated[UUID, Path()],
    payload: TimestampUpdate,
) -> JSONResponse:
    async def operation():
        event = await services.timestamps.update_work_timestamp(
            timestamp_id, worker_id, payload.status, payload.timestamp, payload.memo
        )
        return dump(WorkTimestampResponse, event)

    return respond(await run_operation(operation()))


@router.delete("/{timestamp_id}")
async def delete_timestamp(
    services: ServicesDep,
    worker_id: WorkerId,
    timestamp_id: Annotated[UUID, Path()],
) -> JSONResponse:
    return respond(
        await run_operation(services.timestamps.delete_work_timestamp(timestamp_id, worker_id))
    )


@router.get("/{timestamp_id}/history")
async def timestamp_history(
    services: ServicesDep,
    worker_id: WorkerId,
    timestamp_id: Annotated[UUID, Path()],
) -> JSONResponse:
    async def operation():
        logs = await services.timestamps.get_timestamp_history(timestamp_id, worker_id)
        return dump(WorkTimestampLogResponse, logs)

    return respond(await run_operation(operation()))
