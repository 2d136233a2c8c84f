"""Time application lifecycle.

PENDING --approve--> APPROVED --(payment request)--> REQUESTED --> PAID
PENDING --reject--> REJECTED --(resubmit as a new application)--> PENDING
PENDING --cancel--> deleted, CANCELLED log kept

Applications and timestamps live in the time-series store; worker rates
are read from the relational store. Timestamp claims are guarded updates
(``application_status = 'NONE'``) with a rowcount check, so two
applications can never claim the same clock event.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Sequence
from uuid import UUID, uuid4

from sqlalchemy import delete, select, update

from payroll_settlement.calculators.work_time import (
    calculate_amount,
    calculate_work_minutes,
    derive_application_type,
)
from payroll_settlement.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from payroll_settlement.models.base import as_utc, jsonable, utcnow
from payroll_settlement.models.enums import (
    ApplicationLinkStatus,
    ApplicationStatus,
    RejectionCategory,
)
from payroll_settlement.models.relational import Worker
from payroll_settlement.models.timeseries import (
    TimeApplication,
    TimeApplicationApprovalLog,
    TimeApplicationLog,
    WorkTimestamp,
)
from payroll_settlement.services.saga import Saga
from payroll_settlement.services.state_machine import (
    InvalidTransitionError,
    TimeApplicationStateMachine,
)

if TYPE_CHECKING:
    from payroll_settlement.database import Datastores

logger = logging.getLogger(__name__)

MIN_REJECTION_REASON_LENGTH = 10


def application_snapshot(application: TimeApplication) -> dict[str, Any]:
    """JSON-safe copy of an application for the lifecycle log."""
    return jsonable(
        {
            "id": application.id,
            "workerId": application.worker_id,
            "organizationId": application.organization_id,
            "type": application.application_type,
            "startDate": application.start_date,
            "endDate": application.end_date,
            "totalMinutes": application.total_minutes,
            "totalAmountUsd": application.total_amount_usd,
            "hourlyRateAtSubmission": application.hourly_rate_at_submission,
            "status": application.status,
            "memo": application.memo,
            "timestampIds": list(application.timestamp_ids),
            "approvedAmountUsd": application.approved_amount_usd,
            "hourlyRateAtApproval": application.hourly_rate_at_approval,
            "originalApplicationId": application.original_application_id,
            "resubmitCount": application.resubmit_count,
            "paymentRequestId": application.payment_request_id,
        }
    )


def timestamp_uuids(application: TimeApplication) -> list[UUID]:
    return [UUID(str(ts_id)) for ts_id in application.timestamp_ids]


@dataclass(frozen=True)
class ApplicationDetail:
    """An application with its clock events, joined in code."""

    application: TimeApplication
    timestamps: list[WorkTimestamp]
    worker_name: str | None = None


class TimeApplicationService:
    """Service for the time application lifecycle.

    Operations:
    - create_time_application: claim timestamps and compute the amount
    - approve_application: freeze the approval rate and amount
    - reject_application: record reason and category, release timestamps
    - cancel_time_application: withdraw a pending application
    """

    def __init__(self, datastores: Datastores):
        self.datastores = datastores

    async def create_time_application(
        self,
        worker_id: UUID,
        start_date: datetime,
        end_date: datetime,
        timestamp_ids: Sequence[UUID],
        memo: str | None = None,
        original_application_id: UUID | None = None,
    ) -> TimeApplication:
        """Create a PENDING application over unclaimed timestamps.

        Raises:
            NotFoundError: Worker, timestamps or original application missing.
            ValidationError: Bad period, empty or duplicated ids, zero minutes,
                or resubmission of a non-rejected application.
            ConflictError: A timestamp is already claimed.
        """
        if as_utc(end_date) < as_utc(start_date):
            raise ValidationError("End date must not be before start date", {"endDate": "before startDate"})
        ids = [UUID(str(ts_id)) for ts_id in timestamp_ids]
        if not ids:
            raise ValidationError("At least one timestamp is required", {"timestampIds": "empty"})
        if len(set(ids)) != len(ids):
            raise ValidationError("Timestamp ids must be unique", {"timestampIds": "duplicated"})

        worker = await self._get_worker(worker_id)

        async with self.datastores.timeseries() as session:
            timestamps = list(
                (
                    await session.execute(
                        select(WorkTimestamp)
                        .where(WorkTimestamp.id.in_(ids))
                        .where(WorkTimestamp.worker_id == worker_id)
                    )
                ).scalars()
            )
            original = None
            if original_application_id is not None:
                original = await session.get(TimeApplication, original_application_id)

        if len(timestamps) != len(ids):
            raise NotFoundError("Timestamp")
        claimed = [ts for ts in timestamps if ts.application_status != ApplicationLinkStatus.NONE.value]
        if claimed:
            raise ConflictError(f"{len(claimed)} timestamp(s) already belong to an application")

        total_minutes = calculate_work_minutes(timestamps)
        if total_minutes <= 0:
            raise ValidationError(
                "Worked time is 0 minutes; a WORK→REST or WORK→END pair is required",
                {"timestampIds": "no complete work pair"},
            )

        resubmit_count = 0
        if original_application_id is not None:
            if original is None:
                raise NotFoundError("Original application")
            if original.worker_id != worker_id:
                raise AuthorizationError("Cannot resubmit another worker's application")
            if not TimeApplicationStateMachine.can_resubmit(original.status):
                raise ValidationError("Only rejected applications can be resubmitted")
            resubmit_count = original.resubmit_count + 1

        hourly_rate = Decimal(worker.hourly_rate_usd)
        application = TimeApplication(
            id=uuid4(),
            worker_id=worker_id,
            organization_id=worker.organization_id,
            application_type=derive_application_type(start_date, end_date).value,
            start_date=start_date,
            end_date=end_date,
            total_minutes=total_minutes,
            total_amount_usd=calculate_amount(total_minutes, hourly_rate),
            hourly_rate_at_submission=hourly_rate,
            status=ApplicationStatus.PENDING.value,
            memo=memo or None,
            timestamp_ids=[str(ts_id) for ts_id in ids],
            original_application_id=original_application_id,
            resubmit_count=resubmit_count,
        )
        action = "RESUBMITTED" if original_application_id else "CREATED"

        async def insert_application() -> UUID:
            async with self.datastores.timeseries() as session:
                session.add(application)
            return application.id

        async def delete_application(application_id: UUID) -> None:
            async with self.datastores.timeseries() as session:
                await session.execute(delete(TimeApplication).where(TimeApplication.id == application_id))

        async def claim_timestamps() -> list[UUID]:
            async with self.datastores.timeseries() as session:
                result = await session.execute(
                    update(WorkTimestamp)
                    .where(WorkTimestamp.id.in_(ids))
                    .where(WorkTimestamp.worker_id == worker_id)
                    .where(WorkTimestamp.application_status == ApplicationLinkStatus.NONE.value)
                    .values(application_status=ApplicationLinkStatus.PENDING.value)
                )
                if result.rowcount != len(ids):
                    raise ConflictError("Timestamps were claimed by another application")
            return ids

        async def release_timestamps(claimed_ids: list[UUID]) -> None:
            await self._set_link_status(
                claimed_ids, ApplicationLinkStatus.NONE, expected=ApplicationLinkStatus.PENDING
            )

        async def append_log() -> None:
            async with self.datastores.timeseries() as session:
                session.add(
                    TimeApplicationLog(
                        application_id=application.id,
                        worker_id=worker_id,
                        organization_id=worker.organization_id,
                        action=action,
                        snapshot=application_snapshot(application),
                        log_metadata=jsonable(
                            {
                                "originalApplicationId": original_application_id,
                                "resubmitCount": resubmit_count,
                            }
                        ),
                    )
                )

        saga = Saga("create_time_application")
        saga.step("insert_application", insert_application, compensation=delete_application)
        saga.step("claim_timestamps", claim_timestamps, compensation=release_timestamps)
        saga.step("append_log", append_log)
        await saga.run()

        logger.info(
            "Application %s %s for worker %s: %d min, %s USD",
            application.id,
            action.lower(),
            worker_id,
            total_minutes,
            application.total_amount_usd,
        )
        return application

    async def approve_application(
        self, application_id: UUID, organization_id: UUID, admin_id: UUID
    ) -> TimeApplication:
        """Approve a PENDING application at the worker's current rate.

        The submission amount is kept; the approval rate and amount are
        frozen beside it and the difference is recorded in the approval log.
        """
        application = await self._get_for_organization(application_id, organization_id)
        TimeApplicationStateMachine.validate_transition(application.status, ApplicationStatus.APPROVED)

        worker = await self._get_worker(application.worker_id)
        hourly_rate_at_approval = Decimal(worker.hourly_rate_usd)
        approved_amount = calculate_amount(application.total_minutes, hourly_rate_at_approval)
        discrepancy = approved_amount - Decimal(application.total_amount_usd)
        now = utcnow()

        async with self.datastores.timeseries() as session:
            result = await session.execute(
                update(TimeApplication)
                .where(TimeApplication.id == application_id)
                .where(TimeApplication.status == ApplicationStatus.PENDING.value)
                .values(
                    status=ApplicationStatus.APPROVED.value,
                    approved_at=now,
                    approved_by=admin_id,
                    approved_amount_usd=approved_amount,
                    hourly_rate_at_approval=hourly_rate_at_approval,
                    updated_at=now,
                )
            )
            if result.rowcount != 1:
                raise ConflictError("Application is no longer pending")

            await session.execute(
                update(WorkTimestamp)
                .where(WorkTimestamp.id.in_(timestamp_uuids(application)))
                .where(WorkTimestamp.application_status == ApplicationLinkStatus.PENDING.value)
                .values(application_status=ApplicationLinkStatus.APPROVED.value)
            )
            session.add(
                TimeApplicationApprovalLog(
                    application_id=application_id,
                    admin_id=admin_id,
                    organization_id=organization_id,
                    action="APPROVED",
                    previous_status=ApplicationStatus.PENDING.value,
                    new_status=ApplicationStatus.APPROVED.value,
                    amount_usd=approved_amount,
                    log_metadata=jsonable(
                        {
                            "hourlyRateAtSubmission": application.hourly_rate_at_submission,
                            "hourlyRateAtApproval": hourly_rate_at_approval,
                            "totalAmountUsd": application.total_amount_usd,
                            "approvedAmountUsd": approved_amount,
                            "amountDiscrepancyUsd": discrepancy,
                            "timestampIds": list(application.timestamp_ids),
                            "totalMinutes": application.total_minutes,
                        }
                    ),
                )
            )
            application = await session.get(TimeApplication, application_id, populate_existing=True)

        if discrepancy:
            logger.info(
                "Application %s approved with rate change: submitted %s USD, approved %s USD",
                application_id,
                application.total_amount_usd,
                approved_amount,
            )
        else:
            logger.info("Application %s approved by %s", application_id, admin_id)
        return application

    async def reject_application(
        self,
        application_id: UUID,
        organization_id: UUID,
        admin_id: UUID,
        reason: str,
        category: str,
    ) -> TimeApplication:
        """Reject a PENDING application and release its timestamps.

        Raises:
            ValidationError: Reason shorter than 10 characters (after
                trimming) or unknown category.
        """
        reason = (reason or "").strip()
        if len(reason) < MIN_REJECTION_REASON_LENGTH:
            raise ValidationError(
                f"Rejection reason must be at least {MIN_REJECTION_REASON_LENGTH} characters",
                {"reason": "too short"},
            )
        try:
            rejection_category = RejectionCategory(category)
        except ValueError as e:
            raise ValidationError(
                f"Invalid rejection category: {category}", {"category": "unknown"}
            ) from e

        application = await self._get_for_organization(application_id, organization_id)
        TimeApplicationStateMachine.validate_transition(application.status, ApplicationStatus.REJECTED)
        now = utcnow()

        async with self.datastores.timeseries() as session:
            result = await session.execute(
                update(TimeApplication)
                .where(TimeApplication.id == application_id)
                .where(TimeApplication.status == ApplicationStatus.PENDING.value)
                .values(
                    status=ApplicationStatus.REJECTED.value,
                    rejection_reason=reason,
                    rejection_category=rejection_category.value,
                    rejected_at=now,
                    rejected_by=admin_id,
                    updated_at=now,
                )
            )
            if result.rowcount != 1:
                raise ConflictError("Application is no longer pending")

            await session.execute(
                update(WorkTimestamp)
                .where(WorkTimestamp.id.in_(timestamp_uuids(application)))
                .where(WorkTimestamp.application_status == ApplicationLinkStatus.PENDING.value)
                .values(application_status=ApplicationLinkStatus.NONE.value)
            )
            session.add(
                TimeApplicationApprovalLog(
                    application_id=application_id,
                    admin_id=admin_id,
                    organization_id=organization_id,
                    action="REJECTED",
                    previous_status=ApplicationStatus.PENDING.value,
                    new_status=ApplicationStatus.REJECTED.value,
                    amount_usd=application.total_amount_usd,
                    rejection_reason=reason,
                    log_metadata=jsonable(
                        {
                            "category": rejection_category.value,
                            "timestampIds": list(application.timestamp_ids),
                            "totalMinutes": application.total_minutes,
                            "snapshot": application_snapshot(application),
                        }
                    ),
                )
            )
            application = await session.get(TimeApplication, application_id, populate_existing=True)

        logger.info("Application %s rejected by %s (%s)", application_id, admin_id, rejection_category.value)
        return application

    async def cancel_time_application(self, application_id: UUID, worker_id: UUID) -> None:
        """Withdraw a PENDING application: delete it and release its timestamps."""
        async with self.datastores.timeseries() as session:
            application = await session.get(TimeApplication, application_id)
        if application is None:
            raise NotFoundError("Application")
        if application.worker_id != worker_id:
            raise AuthorizationError("Cannot cancel another worker's application")
        if application.status != ApplicationStatus.PENDING.value:
            raise InvalidTransitionError(
                application.status, ApplicationStatus.CANCELLED.value, "only pending applications can be cancelled"
            )

        snapshot = application_snapshot(application)
        snapshot["status"] = ApplicationStatus.CANCELLED.value

        async with self.datastores.timeseries() as session:
            result = await session.execute(
                delete(TimeApplication)
                .where(TimeApplication.id == application_id)
                .where(TimeApplication.status == ApplicationStatus.PENDING.value)
            )
            if result.rowcount != 1:
                raise ConflictError("Application is no longer pending")

            await session.execute(
                update(WorkTimestamp)
                .where(WorkTimestamp.id.in_(timestamp_uuids(application)))
                .where(WorkTimestamp.worker_id == worker_id)
                .values(application_status=ApplicationLinkStatus.NONE.value)
            )
            session.add(
                TimeApplicationLog(
                    application_id=application_id,
                    worker_id=worker_id,
                    organization_id=application.organization_id,
                    action="CANCELLED",
                    snapshot=snapshot,
                    log_metadata={"cancelledAt": utcnow().isoformat()},
                )
            )
        logger.info("Application %s cancelled by worker %s", application_id, worker_id)

    async def get_worker_applications(
        self, worker_id: UUID, status: str | None = None
    ) -> list[TimeApplication]:
        stmt = select(TimeApplication).where(TimeApplication.worker_id == worker_id)
        if status is not None:
            stmt = stmt.where(TimeApplication.status == ApplicationStatus(status).value)
        async with self.datastores.timeseries() as session:
            result = await session.execute(stmt.order_by(TimeApplication.created_at.desc()))
            return list(result.scalars().all())

    async def get_organization_applications(
        self, organization_id: UUID, status: str | None = None
    ) -> list[TimeApplication]:
        stmt = select(TimeApplication).where(TimeApplication.organization_id == organization_id)
        if status is not None:
            stmt = stmt.where(TimeApplication.status == ApplicationStatus(status).value)
        async with self.datastores.timeseries() as session:
            result = await session.execute(stmt.order_by(TimeApplication.created_at.desc()))
            return list(result.scalars().all())

    async def get_application_detail(
        self, application_id: UUID, organization_id: UUID
    ) -> ApplicationDetail:
        application = await self._get_for_organization(application_id, organization_id)
        async with self.datastores.timeseries() as session:
            result = await session.execute(
                select(WorkTimestamp)
                .where(WorkTimestamp.id.in_(timestamp_uuids(application)))
                .order_by(WorkTimestamp.timestamp.asc())
            )
            timestamps = list(result.scalars().all())
        async with self.datastores.relational() as session:
            worker = await session.get(Worker, application.worker_id)
        return ApplicationDetail(
            application=application,
            timestamps=timestamps,
            worker_name=worker.name if worker else None,
        )

    async def _get_worker(self, worker_id: UUID) -> Worker:
        async with self.datastores.relational() as session:
            worker = await session.get(Worker, worker_id)
        if worker is None:
            raise NotFoundError("Worker")
        return worker

    async def _get_for_organization(
        self, application_id: UUID, organization_id: UUID
    ) -> TimeApplication:
        async with self.datastores.timeseries() as session:
            application = await session.get(TimeApplication, application_id)
        if application is None:
            raise NotFoundError("Application")
        if application.organization_id != organization_id:
            raise AuthorizationError("Application belongs to another organization")
        return application

    async def _set_link_status(
        self,
        timestamp_ids: Sequence[UUID],
        status: ApplicationLinkStatus,
        expected: ApplicationLinkStatus,
    ) -> int:
        async with self.datastores.timeseries() as session:
            result = await session.execute(
                update(WorkTimestamp)
                .where(WorkTimestamp.id.in_(list(timestamp_ids)))
                .where(WorkTimestamp.application_status == expected.value)
                .values(application_status=status.value)
            )
            return result.rowcount
