"""Payment hash lookup and verification."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import select, update

from payroll_settlement.errors import AuthorizationError, NotFoundError, ValidationError
from payroll_settlement.models.base import utcnow
from payroll_settlement.models.relational import PaymentRequest, Worker
from payroll_settlement.models.timeseries import PaymentHashLog
from payroll_settlement.settlement.hashing import verify_payment_hash

if TYPE_CHECKING:
    from payroll_settlement.database import Datastores

logger = logging.getLogger(__name__)


def _normalize_digest(data_hash: str) -> str:
    digest = (data_hash or "").strip().lower()
    if len(digest) != 64 or any(ch not in "0123456789abcdef" for ch in digest):
        raise ValidationError("Data hash must be 64 hex characters", {"dataHash": "malformed"})
    return digest


class PaymentHashService:
    """Finds hash logs by digest and re-verifies stored canonical data.

    Workers see only their own payments; admins only their organization's.
    """

    def __init__(self, datastores: Datastores):
        self.datastores = datastores

    async def search_payment_hash_for_worker(
        self, data_hash: str, worker_id: UUID
    ) -> list[PaymentHashLog]:
        digest = _normalize_digest(data_hash)
        logs = await self._find_by_digest(digest)
        if not logs:
            return []
        async with self.datastores.relational() as session:
            visible = set(
                (
                    await session.execute(
                        select(PaymentRequest.id)
                        .where(PaymentRequest.id.in_({log.payment_request_id for log in logs}))
                        .where(PaymentRequest.worker_id == worker_id)
                    )
                ).scalars()
            )
        return [log for log in logs if log.payment_request_id in visible]

    async def search_payment_hash_for_admin(
        self, data_hash: str, organization_id: UUID
    ) -> list[PaymentHashLog]:
        digest = _normalize_digest(data_hash)
        logs = await self._find_by_digest(digest)
        if not logs:
            return []
        async with self.datastores.relational() as session:
            visible = set(
                (
                    await session.execute(
                        select(PaymentRequest.id)
                        .join(Worker, Worker.id == PaymentRequest.worker_id)
                        .where(PaymentRequest.id.in_({log.payment_request_id for log in logs}))
                        .where(Worker.organization_id == organization_id)
                    )
                ).scalars()
            )
        return [log for log in logs if log.payment_request_id in visible]

    async def verify_payment_hash_log(
        self, log_id: UUID, organization_id: UUID | None = None
    ) -> PaymentHashLog:
        """Recompute the digest of the stored canonical JSON.

        The first verification is recorded; later calls return the stored
        result unchanged. When ``organization_id`` is given the payment must
        belong to it.
        """
        if organization_id is not None:
            await self._check_organization(log_id, organization_id)

        async with self.datastores.timeseries() as session:
            log = await session.get(PaymentHashLog, log_id)
            if log is None:
                raise NotFoundError("Payment hash log")
            if log.verified_at is not None:
                return log

            matches = verify_payment_hash(log.canonical_data_json, log.data_hash)
            result = await session.execute(
                update(PaymentHashLog)
                .where(PaymentHashLog.id == log_id)
                .where(PaymentHashLog.verified_at.is_(None))
                .values(verified_at=utcnow(), verification_result=matches)
            )
            log = (
                await session.execute(
                    select(PaymentHashLog)
                    .where(PaymentHashLog.id == log_id)
                    .execution_options(populate_existing=True)
                )
            ).scalar_one()

        if result.rowcount == 1 and not matches:
            logger.error(
                "Hash verification failed for payment request %s (stored hash %s)",
                log.payment_request_id,
                log.data_hash,
            )
        return log

    async def _check_organization(self, log_id: UUID, organization_id: UUID) -> None:
        async with self.datastores.timeseries() as session:
            log = await session.get(PaymentHashLog, log_id)
        if log is None:
            raise NotFoundError("Payment hash log")
        async with self.datastores.relational() as session:
            owner = (
                await session.execute(
                    select(Worker.organization_id)
                    .join(PaymentRequest, PaymentRequest.worker_id == Worker.id)
                    .where(PaymentRequest.id == log.payment_request_id)
                )
            ).scalar_one_or_none()
        if owner != organization_id:
            raise AuthorizationError("Payment belongs to another organization")

    async def _find_by_digest(self, digest: str) -> list[PaymentHashLog]:
        async with self.datastores.timeseries() as session:
            result = await session.execute(
                select(PaymentHashLog)
                .where(PaymentHashLog.data_hash == digest)
                .order_by(PaymentHashLog.created_at.desc())
            )
            return list(result.scalars().all())
