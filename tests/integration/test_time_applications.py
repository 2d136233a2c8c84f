"""Time application lifecycle against both stores."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

import pytest
from sqlalchemy import select, update

from payroll_settlement.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from payroll_settlement.models import (
    TimeApplication,
    TimeApplicationApprovalLog,
    TimeApplicationLog,
    Worker,
    WorkTimestamp,
)
from payroll_settlement.services import InvalidTransitionError

BASE_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


async def link_statuses(datastores, application) -> set[str]:
    ids = [UUID(ts_id) for ts_id in application.timestamp_ids]
    async with datastores.timeseries() as session:
        result = await session.execute(
            select(WorkTimestamp.application_status).where(WorkTimestamp.id.in_(ids))
        )
        return set(result.scalars())


async def application_logs(datastores, application_id) -> list[str]:
    async with datastores.timeseries() as session:
        result = await session.execute(
            select(TimeApplicationLog.action)
            .where(TimeApplicationLog.application_id == application_id)
            .order_by(TimeApplicationLog.created_at.asc())
        )
        return list(result.scalars())


class TestCreate:
    """Submitting applications over clock events."""

    async def test_two_hour_shift(self, workflow, datastores, seeded):
        application = await workflow.submit()

        assert application.status == "PENDING"
        assert application.total_minutes == 120
        assert application.total_amount_usd == Decimal("60.00")
        assert application.hourly_rate_at_submission == Decimal("30.00")
        assert application.organization_id == seeded.organization_id
        assert application.application_type == "BATCH"
        assert await link_statuses(datastores, application) == {"PENDING"}
        assert await application_logs(datastores, application.id) == ["CREATED"]

    async def test_timestamp_claimed_once(self, workflow, services, seeded):
        ids = await workflow.shift()
        await services.applications.create_time_application(
            seeded.worker_id, BASE_TIME, BASE_TIME + timedelta(hours=2), ids
        )

        with pytest.raises(ConflictError):
            await services.applications.create_time_application(
                seeded.worker_id, BASE_TIME, BASE_TIME + timedelta(hours=2), ids
            )

    async def test_no_complete_pair(self, services, seeded):
        work = await services.timestamps.create_work_timestamp(seeded.worker_id, "WORK", BASE_TIME)
        with pytest.raises(ValidationError):
            await services.applications.create_time_application(
                seeded.worker_id, BASE_TIME, BASE_TIME + timedelta(hours=1), [work.id]
            )

    async def test_end_before_start(self, workflow, services, seeded):
        ids = await workflow.shift()
        with pytest.raises(ValidationError):
            await services.applications.create_time_application(
                seeded.worker_id, BASE_TIME, BASE_TIME - timedelta(hours=1), ids
            )

    async def test_duplicate_ids(self, workflow, services, seeded):
        ids = await workflow.shift()
        with pytest.raises(ValidationError):
            await services.applications.create_time_application(
                seeded.worker_id, BASE_TIME, BASE_TIME + timedelta(hours=2), [ids[0], ids[0]]
            )

    async def test_foreign_timestamps_are_not_found(self, workflow, services, seeded):
        ids = await workflow.shift(worker_id=seeded.other_worker_id)
        with pytest.raises(NotFoundError):
            await services.applications.create_time_application(
                seeded.worker_id, BASE_TIME, BASE_TIME + timedelta(hours=2), ids
            )


class TestApprove:
    """Approval freezes the rate in force at approval time."""

    async def test_approve_at_unchanged_rate(self, workflow, services, datastores, seeded):
        application = await workflow.submit()

        approved = await services.applications.approve_application(
            application.id, seeded.organization_id, seeded.admin_id
        )

        assert approved.status == "APPROVED"
        assert approved.approved_amount_usd == Decimal("60.00")
        assert approved.approved_by == seeded.admin_id
        assert await link_statuses(datastores, application) == {"APPROVED"}

    async def test_rate_change_is_recorded(self, workflow, services, datastores, seeded):
        application = await workflow.submit()
        async with datastores.relational() as session:
            await session.execute(
                update(Worker)
                .where(Worker.id == seeded.worker_id)
                .values(hourly_rate_usd=Decimal("45.00"))
            )

        approved = await services.applications.approve_application(
            application.id, seeded.organization_id, seeded.admin_id
        )

        assert approved.total_amount_usd == Decimal("60.00")
        assert approved.approved_amount_usd == Decimal("90.00")
        assert approved.hourly_rate_at_approval == Decimal("45.00")
        async with datastores.timeseries() as session:
            log = (
                await session.execute(
                    select(TimeApplicationApprovalLog).where(
                        TimeApplicationApprovalLog.application_id == application.id
                    )
                )
            ).scalar_one()
        assert log.action == "APPROVED"
        assert log.log_metadata["amountDiscrepancyUsd"] == "30.00"

    async def test_other_organization_cannot_approve(self, workflow, services, seeded):
        application = await workflow.submit()
        with pytest.raises(AuthorizationError):
            await services.applications.approve_application(
                application.id, seeded.other_organization_id, seeded.other_admin_id
            )

    async def test_approve_twice(self, workflow, services, seeded):
        application = await workflow.approved()
        with pytest.raises(InvalidTransitionError):
            await services.applications.approve_application(
                application.id, seeded.organization_id, seeded.admin_id
            )


class TestRejectAndResubmit:
    """Rejection releases the events for a new application."""

    async def test_reject_releases_timestamps(self, workflow, services, datastores, seeded):
        application = await workflow.submit()

        rejected = await services.applications.reject_application(
            application.id,
            seeded.organization_id,
            seeded.admin_id,
            "  Break was not recorded  ",
            "MISSING_REST",
        )

        assert rejected.status == "REJECTED"
        assert rejected.rejection_reason == "Break was not recorded"
        assert rejected.rejection_category == "MISSING_REST"
        assert await link_statuses(datastores, application) == {"NONE"}

    @pytest.mark.parametrize(
        "reason, category",
        [("too short", "OTHER"), ("          x", "OTHER"), ("A long enough reason", "LATE")],
    )
    async def test_invalid_rejection(self, workflow, services, seeded, reason, category):
        application = await workflow.submit()
        with pytest.raises(ValidationError):
            await services.applications.reject_application(
                application.id, seeded.organization_id, seeded.admin_id, reason, category
            )

    async def test_ten_character_reason_is_enough(self, workflow, services, seeded):
        application = await workflow.submit()
        rejected = await services.applications.reject_application(
            application.id, seeded.organization_id, seeded.admin_id, "Too short!", "OTHER"
        )
        assert rejected.status == "REJECTED"
        assert rejected.rejection_reason == "Too short!"

    async def test_resubmit_counts_attempts(self, workflow, services, datastores, seeded):
        application = await workflow.submit()
        await services.applications.reject_application(
            application.id, seeded.organization_id, seeded.admin_id, "Wrong end time entered", "TIME_ERROR"
        )

        resubmitted = await services.applications.create_time_application(
            seeded.worker_id,
            BASE_TIME,
            BASE_TIME + timedelta(hours=2),
            [UUID(ts_id) for ts_id in application.timestamp_ids],
            original_application_id=application.id,
        )

        assert resubmitted.status == "PENDING"
        assert resubmitted.resubmit_count == 1
        assert resubmitted.original_application_id == application.id
        assert await application_logs(datastores, resubmitted.id) == ["RESUBMITTED"]

    async def test_only_rejected_can_be_resubmitted(self, workflow, services, seeded):
        application = await workflow.submit()
        ids = await workflow.shift(BASE_TIME + timedelta(days=1))
        with pytest.raises(ValidationError):
            await services.applications.create_time_application(
                seeded.worker_id,
                BASE_TIME + timedelta(days=1),
                BASE_TIME + timedelta(days=1, hours=2),
                ids,
                original_application_id=application.id,
            )


class TestCancel:
    """Workers can withdraw pending applications."""

    async def test_cancel_deletes_and_logs(self, workflow, services, datastores, seeded):
        application = await workflow.submit()

        await services.applications.cancel_time_application(application.id, seeded.worker_id)

        async with datastores.timeseries() as session:
            assert await session.get(TimeApplication, application.id) is None
            log = (
                await session.execute(
                    select(TimeApplicationLog)
                    .where(TimeApplicationLog.application_id == application.id)
                    .where(TimeApplicationLog.action == "CANCELLED")
                )
            ).scalar_one()
        assert log.snapshot["status"] == "CANCELLED"
        assert await link_statuses(datastores, application) == {"NONE"}

    async def test_cannot_cancel_approved(self, workflow, services, seeded):
        application = await workflow.approved()
        with pytest.raises(InvalidTransitionError):
            await services.applications.cancel_time_application(application.id, seeded.worker_id)

    async def test_cannot_cancel_for_someone_else(self, workflow, services, seeded):
        application = await workflow.submit()
        with pytest.raises(AuthorizationError):
            await services.applications.cancel_time_application(
                application.id, seeded.other_worker_id
            )


class TestQueries:
    async def test_status_filters(self, workflow, services, seeded):
        pending = await workflow.submit()
        approved = await workflow.approved(BASE_TIME + timedelta(days=1))

        worker_pending = await services.applications.get_worker_applications(
            seeded.worker_id, "PENDING"
        )
        organization_all = await services.applications.get_organization_applications(
            seeded.organization_id
        )

        assert [app.id for app in worker_pending] == [pending.id]
        assert {app.id for app in organization_all} == {pending.id, approved.id}
        assert await services.applications.get_organization_applications(
            seeded.other_organization_id
        ) == []

    async def test_detail_joins_events_and_worker(self, workflow, services, seeded):
        application = await workflow.submit()

        detail = await services.applications.get_application_detail(
            application.id, seeded.organization_id
        )

        assert detail.worker_name == "Mika Tanaka"
        assert [event.status for event in detail.timestamps] == ["WORK", "END"]
