"""Work-time and pay amount calculation for time applications."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Protocol

from payroll_settlement.models.enums import ApplicationType, TimestampStatus

CENTS = Decimal("0.01")
MS_PER_MINUTE = 60_000
MS_PER_DAY = 86_400_000
BATCH_MAX_DAYS = 7


class ClockEvent(Protocol):
    timestamp: datetime
    status: str


@dataclass(frozen=True)
class Clock:
    """Minimal clock event, for callers without a stored timestamp row."""

    timestamp: datetime
    status: str


def _ms_between(start: datetime, end: datetime) -> int:
    delta = end - start
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def calculate_work_minutes(timestamps: Iterable[ClockEvent]) -> int:
    """Total worked minutes over a set of clock events.

    Walks events in time order. WORK opens a marker unless one is open
    (repeated WORKs keep the first). REST or END closes an open marker and
    adds the elapsed milliseconds. Only the grand total is floored to
    whole minutes, so short pairs keep their seconds.
    """
    total_ms = 0
    work_start: datetime | None = None

    for event in sorted(timestamps, key=lambda e: e.timestamp):
        status = TimestampStatus(event.status)
        if status == TimestampStatus.WORK:
            if work_start is None:
                work_start = event.timestamp
        elif work_start is not None:
            total_ms += _ms_between(work_start, event.timestamp)
            work_start = None

    return total_ms // MS_PER_MINUTE


def derive_application_type(start_date: datetime, end_date: datetime) -> ApplicationType:
    """SINGLE for a same-instant span, BATCH up to a week, PERIOD beyond."""
    days = math.ceil(_ms_between(start_date, end_date) / MS_PER_DAY)
    if days == 0:
        return ApplicationType.SINGLE
    if days <= BATCH_MAX_DAYS:
        return ApplicationType.BATCH
    return ApplicationType.PERIOD


def calculate_amount(total_minutes: int, hourly_rate_usd: Decimal) -> Decimal:
    """Pay for ``total_minutes`` at ``hourly_rate_usd``, rounded to cents."""
    amount = Decimal(total_minutes) / Decimal(60) * Decimal(hourly_rate_usd)
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)
