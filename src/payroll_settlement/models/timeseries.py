"""Time-series-store models: work timestamps, applications and audit logs.

Rows here reference relational ids (workers, organizations, payment
requests) by value only. No foreign keys cross the store boundary.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from payroll_settlement.models.base import JsonType, TimeseriesBase, TimestampMixin, utcnow
from payroll_settlement.models.enums import (
    ApplicationLinkStatus,
    ApplicationStatus,
    ApplicationType,
    RejectionCategory,
    TimestampStatus,
    sql_in,
)


class WorkTimestamp(TimeseriesBase, TimestampMixin):
    """A single clock event (WORK, REST or END)."""

    __tablename__ = "work_timestamp"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    worker_id: Mapped[UUID] = mapped_column(nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    application_status: Mapped[str] = mapped_column(
        String, nullable=False, default=ApplicationLinkStatus.NONE.value
    )
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(f"status IN ({sql_in(TimestampStatus)})", name="work_timestamp_status_ck"),
        CheckConstraint(
            f"application_status IN ({sql_in(ApplicationLinkStatus)})",
            name="work_timestamp_application_status_ck",
        ),
        Index("ix_work_timestamp_worker_time", "worker_id", "timestamp"),
    )


class WorkTimestampLog(TimeseriesBase):
    """Immutable field-level change record for a work timestamp."""

    __tablename__ = "work_timestamp_log"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    timestamp_id: Mapped[UUID] = mapped_column(nullable=False)
    worker_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    field_name: Mapped[str | None] = mapped_column(String, nullable=True)
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class TimeApplication(TimeseriesBase, TimestampMixin):
    """A worker's claim for pay over a set of timestamps."""

    __tablename__ = "time_application"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    worker_id: Mapped[UUID] = mapped_column(nullable=False)
    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    application_type: Mapped[str] = mapped_column(String, nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount_usd: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    hourly_rate_at_submission: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=ApplicationStatus.PENDING.value
    )
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp_ids: Mapped[list[str]] = mapped_column(JsonType, nullable=False)

    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_amount_usd: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    hourly_rate_at_approval: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    rejection_category: Mapped[str | None] = mapped_column(String, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_by: Mapped[UUID | None] = mapped_column(nullable=True)

    original_application_id: Mapped[UUID | None] = mapped_column(nullable=True)
    resubmit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payment_request_id: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            f"status IN ({sql_in(ApplicationStatus)})", name="time_application_status_ck"
        ),
        CheckConstraint(
            f"application_type IN ({sql_in(ApplicationType)})",
            name="time_application_type_ck",
        ),
        CheckConstraint(
            f"rejection_category IS NULL OR rejection_category IN ({sql_in(RejectionCategory)})",
            name="time_application_rejection_category_ck",
        ),
        CheckConstraint("end_date >= start_date", name="time_application_dates_ck"),
        CheckConstraint("total_minutes > 0", name="time_application_minutes_ck"),
        Index("ix_time_application_worker_status", "worker_id", "status"),
        Index("ix_time_application_org_status", "organization_id", "status"),
    )


class TimeApplicationLog(TimeseriesBase):
    """Snapshot of an application at a lifecycle action."""

    __tablename__ = "time_application_log"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    application_id: Mapped[UUID] = mapped_column(nullable=False)
    worker_id: Mapped[UUID] = mapped_column(nullable=False)
    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    snapshot: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False)
    log_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (Index("ix_time_application_log_application", "application_id"),)


class TimeApplicationApprovalLog(TimeseriesBase):
    """APPROVED or REJECTED decision by an administrator."""

    __tablename__ = "time_application_approval_log"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    application_id: Mapped[UUID] = mapped_column(nullable=False)
    admin_id: Mapped[UUID] = mapped_column(nullable=False)
    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    previous_status: Mapped[str] = mapped_column(String, nullable=False)
    new_status: Mapped[str] = mapped_column(String, nullable=False)
    amount_usd: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    log_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class PaymentRequestLog(TimeseriesBase):
    """Status change of a payment request."""

    __tablename__ = "payment_request_log"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payment_request_id: Mapped[UUID] = mapped_column(nullable=False)
    worker_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    previous_status: Mapped[str | None] = mapped_column(String, nullable=True)
    new_status: Mapped[str] = mapped_column(String, nullable=False)
    amount_usd: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    crypto_amount: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    crypto_rate: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    crypto_type: Mapped[str] = mapped_column(String, nullable=False)
    crypto_address: Mapped[str | None] = mapped_column(String, nullable=True)
    admin_id: Mapped[UUID | None] = mapped_column(nullable=True)
    transaction_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_payment_request_log_request_action", "payment_request_id", "action"),
    )


class PaymentTransaction(TimeseriesBase):
    """Settled ledger transfer, one row per completed payment request."""

    __tablename__ = "payment_transaction"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payment_request_id: Mapped[UUID] = mapped_column(nullable=False, unique=True)
    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    worker_id: Mapped[UUID] = mapped_column(nullable=False)
    amount_usd: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    crypto_amount: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    crypto_type: Mapped[str] = mapped_column(String, nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    transaction_hash: Mapped[str] = mapped_column(String, nullable=False)
    ledger_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fee: Mapped[str | None] = mapped_column(String, nullable=True)
    delivered_amount: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class PaymentHashLog(TimeseriesBase):
    """Write-once audit record of a payment's canonical data and digest."""

    __tablename__ = "payment_hash_log"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payment_request_id: Mapped[UUID] = mapped_column(nullable=False)
    data_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    canonical_data_json: Mapped[str] = mapped_column(Text, nullable=False)
    transaction_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    verification_result: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("payment_request_id", "data_hash", name="payment_hash_log_request_hash_uq"),
        Index("ix_payment_hash_log_data_hash", "data_hash"),
    )


class ExchangeRateHistory(TimeseriesBase):
    """Every rate resolved for a payout."""

    __tablename__ = "exchange_rate_history"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    source: Mapped[str] = mapped_column(String, nullable=False)
    crypto_type: Mapped[str] = mapped_column(String, nullable=False)
    fiat_currency: Mapped[str] = mapped_column(String, nullable=False, default="USD")
    rate: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
