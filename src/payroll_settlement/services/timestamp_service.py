"""Work timestamp recording with a field-level change log."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import delete, select, update

from payroll_settlement.errors import ConflictError, NotFoundError, ValidationError
from payroll_settlement.models.base import as_utc, utcnow
from payroll_settlement.models.enums import ApplicationLinkStatus, TimestampStatus
from payroll_settlement.models.timeseries import WorkTimestamp, WorkTimestampLog

if TYPE_CHECKING:
    from payroll_settlement.database import Datastores

logger = logging.getLogger(__name__)

EDITABLE_LINK_STATUSES = {ApplicationLinkStatus.NONE.value, ApplicationLinkStatus.REJECTED.value}


def _parse_status(status: str) -> TimestampStatus:
    try:
        return TimestampStatus(status)
    except ValueError as e:
        raise ValidationError(
            f"Invalid timestamp status: {status}",
            {"status": "must be one of WORK, REST, END"},
        ) from e


class TimestampService:
    """Creates, edits and deletes clock events.

    Every change appends immutable WorkTimestampLog rows, one per field.
    Events already claimed by a live application cannot be changed.
    """

    def __init__(self, datastores: Datastores):
        self.datastores = datastores

    async def create_work_timestamp(
        self,
        worker_id: UUID,
        status: str,
        timestamp: datetime | None = None,
        memo: str | None = None,
    ) -> WorkTimestamp:
        clock_status = _parse_status(status)
        event = WorkTimestamp(
            worker_id=worker_id,
            timestamp=timestamp or utcnow(),
            status=clock_status.value,
            application_status=ApplicationLinkStatus.NONE.value,
            memo=memo or None,
        )
        async with self.datastores.timeseries() as session:
            session.add(event)
            await session.flush()
            session.add(
                WorkTimestampLog(
                    timestamp_id=event.id,
                    worker_id=worker_id,
                    action="CREATED",
                    field_name="status",
                    old_value=None,
                    new_value=clock_status.value,
                )
            )
        logger.info("Worker %s clocked %s", worker_id, clock_status.value)
        return event

    async def update_work_timestamp(
        self,
        timestamp_id: UUID,
        worker_id: UUID,
        status: str | None = None,
        timestamp: datetime | None = None,
        memo: str | None = None,
    ) -> WorkTimestamp:
        """Edit an event, logging each changed field.

        Raises:
            NotFoundError: No such event for this worker.
            ConflictError: The event belongs to a pending, approved or paid
                application.
        """
        new_status = _parse_status(status).value if status is not None else None

        async with self.datastores.timeseries() as session:
            event = await self._get_owned(session, timestamp_id, worker_id)
            if event.application_status not in EDITABLE_LINK_STATUSES:
                raise ConflictError(
                    f"Timestamp is linked to an application ({event.application_status}) "
                    "and cannot be edited"
                )

            changes: list[tuple[str, str | None, str | None]] = []
            values: dict[str, object] = {}
            if new_status is not None and new_status != event.status:
                changes.append(("status", event.status, new_status))
                values["status"] = new_status
            if timestamp is not None and as_utc(timestamp) != as_utc(event.timestamp):
                changes.append(
                    ("timestamp", as_utc(event.timestamp).isoformat(), as_utc(timestamp).isoformat())
                )
                values["timestamp"] = timestamp
            if memo is not None and memo != (event.memo or ""):
                changes.append(("memo", event.memo, memo))
                values["memo"] = memo

            if not values:
                return event

            result = await session.execute(
                update(WorkTimestamp)
                .where(WorkTimestamp.id == timestamp_id)
                .where(WorkTimestamp.application_status.in_(EDITABLE_LINK_STATUSES))
                .values(**values, updated_at=utcnow())
            )
            if result.rowcount != 1:
                raise ConflictError("Timestamp was claimed by an application while editing")

            for field_name, old_value, new_value in changes:
                session.add(
                    WorkTimestampLog(
                        timestamp_id=timestamp_id,
                        worker_id=worker_id,
                        action="UPDATED",
                        field_name=field_name,
                        old_value=old_value,
                        new_value=new_value,
                    )
                )
            await session.refresh(event)

        logger.info("Worker %s edited timestamp %s (%d field(s))", worker_id, timestamp_id, len(changes))
        return event

    async def delete_work_timestamp(self, timestamp_id: UUID, worker_id: UUID) -> None:
        """Delete an unclaimed event, logging its last status and time.

        Raises:
            NotFoundError: No such event for this worker.
            ConflictError: The event is linked to an application.
        """
        async with self.datastores.timeseries() as session:
            event = await self._get_owned(session, timestamp_id, worker_id)

            result = await session.execute(
                delete(WorkTimestamp)
                .where(WorkTimestamp.id == timestamp_id)
                .where(WorkTimestamp.application_status == ApplicationLinkStatus.NONE.value)
            )
            if result.rowcount != 1:
                raise ConflictError("Timestamp is linked to an application and cannot be deleted")

            for field_name, old_value in (
                ("status", event.status),
                ("timestamp", as_utc(event.timestamp).isoformat()),
            ):
                session.add(
                    WorkTimestampLog(
                        timestamp_id=timestamp_id,
                        worker_id=worker_id,
                        action="DELETED",
                        field_name=field_name,
                        old_value=old_value,
                        new_value="DELETED",
                    )
                )
        logger.info("Worker %s deleted timestamp %s", worker_id, timestamp_id)

    async def get_timestamps_by_period(
        self, worker_id: UUID, start: datetime, end: datetime
    ) -> list[WorkTimestamp]:
        """Events with ``start <= timestamp < end``, oldest first."""
        async with self.datastores.timeseries() as session:
            result = await session.execute(
                select(WorkTimestamp)
                .where(WorkTimestamp.worker_id == worker_id)
                .where(WorkTimestamp.timestamp >= start)
                .where(WorkTimestamp.timestamp < end)
                .order_by(WorkTimestamp.timestamp.asc())
            )
            return list(result.scalars().all())

    async def get_timestamp_history(self, timestamp_id: UUID, worker_id: UUID) -> list[WorkTimestampLog]:
        async with self.datastores.timeseries() as session:
            result = await session.execute(
                select(WorkTimestampLog)
                .where(WorkTimestampLog.timestamp_id == timestamp_id)
                .where(WorkTimestampLog.worker_id == worker_id)
                .order_by(WorkTimestampLog.changed_at.asc())
            )
            return list(result.scalars().all())

    async def _get_owned(self, session, timestamp_id: UUID, worker_id: UUID) -> WorkTimestamp:
        event = (
            await session.execute(
                select(WorkTimestamp)
                .where(WorkTimestamp.id == timestamp_id)
                .where(WorkTimestamp.worker_id == worker_id)
            )
        ).scalar_one_or_none()
        if event is None:
            raise NotFoundError("Timestamp")
        return event
