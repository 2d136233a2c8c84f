"""Per-organization payout limits."""

from __future__ import annotations

import logging
import math
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import func, select

from payroll_settlement.errors import PaymentError
from payroll_settlement.models.base import as_utc, utcnow
from payroll_settlement.models.enums import PaymentRequestStatus
from payroll_settlement.models.relational import (
    CryptoAddress,
    CryptoSetting,
    PaymentRequest,
    Worker,
)

if TYPE_CHECKING:
    from payroll_settlement.database import Datastores

logger = logging.getLogger(__name__)

COUNTED_STATUSES = (PaymentRequestStatus.COMPLETED.value, PaymentRequestStatus.PROCESSING.value)


def start_of_utc_day(now: datetime) -> datetime:
    return datetime.combine(as_utc(now).date(), time.min, tzinfo=timezone.utc)


class PaymentLimitChecker:
    """Enforces CryptoSetting limits before a custodial payout.

    - daily_payment_limit: payouts processed since UTC midnight (0 = off)
    - daily_amount_limit_usd: fiat total processed since UTC midnight
    - new_address_lock_hours: wait after a destination becomes default
    """

    def __init__(self, datastores: Datastores):
        self.datastores = datastores

    async def validate(
        self,
        organization_id: UUID,
        amount_usd: Decimal,
        crypto_address: CryptoAddress,
        now: datetime | None = None,
    ) -> None:
        """Raise PaymentError when the payout would break a limit."""
        now = now or utcnow()
        day_start = start_of_utc_day(now)

        async with self.datastores.relational() as session:
            setting = (
                await session.execute(
                    select(CryptoSetting).where(CryptoSetting.organization_id == organization_id)
                )
            ).scalar_one_or_none()
            if setting is None:
                return

            processed_today = (
                select(PaymentRequest)
                .join(Worker, Worker.id == PaymentRequest.worker_id)
                .where(Worker.organization_id == organization_id)
                .where(PaymentRequest.status.in_(COUNTED_STATUSES))
                .where(PaymentRequest.processed_at >= day_start)
                .subquery()
            )

            if setting.daily_payment_limit > 0:
                count = (
                    await session.execute(select(func.count()).select_from(processed_today))
                ).scalar_one()
                if count >= setting.daily_payment_limit:
                    logger.info(
                        "Organization %s hit daily payment limit (%d)",
                        organization_id,
                        setting.daily_payment_limit,
                    )
                    raise PaymentError(
                        f"Daily payment limit of {setting.daily_payment_limit} reached"
                    )

            if setting.daily_amount_limit_usd:
                total = (
                    await session.execute(
                        select(func.coalesce(func.sum(processed_today.c.amount_usd), 0))
                    )
                ).scalar_one()
                limit = Decimal(setting.daily_amount_limit_usd)
                if Decimal(str(total)) + Decimal(amount_usd) > limit:
                    raise PaymentError(f"Daily payment amount limit of {limit} USD would be exceeded")

        if setting.new_address_lock_hours > 0 and crypto_address.default_set_at is not None:
            lock_until = as_utc(crypto_address.default_set_at) + timedelta(
                hours=setting.new_address_lock_hours
            )
            if as_utc(now) < lock_until:
                hours_remaining = math.ceil((lock_until - as_utc(now)).total_seconds() / 3600)
                raise PaymentError(
                    f"Destination address is locked after a recent change "
                    f"(about {hours_remaining} hour(s) remaining)"
                )
