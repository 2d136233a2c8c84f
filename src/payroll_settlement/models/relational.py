"""Relational-store models: organizations, workers, payment requests, wallets."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from payroll_settlement.models.base import JsonType, RelationalBase, TimestampMixin
from payroll_settlement.models.enums import (
    CryptoType,
    PaymentRequestStatus,
    WithdrawalType,
    sql_in,
)


class Organization(RelationalBase, TimestampMixin):
    """Employer tenant."""

    __tablename__ = "organization"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)


class Worker(RelationalBase, TimestampMixin):
    """Worker paid by the hour."""

    __tablename__ = "worker"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str] = mapped_column(String, nullable=False)
    hourly_rate_usd: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    __table_args__ = (
        CheckConstraint("hourly_rate_usd >= 0", name="worker_hourly_rate_ck"),
    )


class PaymentRequest(RelationalBase, TimestampMixin):
    """A batch of approved applications bundled into one ledger transfer.

    amount_usd, crypto_rate and crypto_amount are locked at creation.
    """

    __tablename__ = "payment_request"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    worker_id: Mapped[UUID] = mapped_column(
        ForeignKey("worker.id", ondelete="CASCADE"),
        nullable=False,
    )
    application_ids: Mapped[list[str]] = mapped_column(JsonType, nullable=False)
    amount_usd: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    crypto_type: Mapped[str] = mapped_column(String, nullable=False)
    crypto_rate: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    crypto_amount: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=PaymentRequestStatus.PENDING.value
    )
    withdrawal_type: Mapped[str] = mapped_column(
        String, nullable=False, default=WithdrawalType.ADMIN_APPROVED.value
    )
    transaction_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    canonical_data_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    submitted_tx_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    submitted_last_ledger: Mapped[int | None] = mapped_column(Integer, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_code: Mapped[str | None] = mapped_column(String, nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            f"status IN ({sql_in(PaymentRequestStatus)})",
            name="payment_request_status_ck",
        ),
        CheckConstraint(
            f"crypto_type IN ({sql_in(CryptoType)})",
            name="payment_request_crypto_type_ck",
        ),
        CheckConstraint(
            f"withdrawal_type IN ({sql_in(WithdrawalType)})",
            name="payment_request_withdrawal_type_ck",
        ),
        CheckConstraint("amount_usd > 0", name="payment_request_amount_ck"),
        CheckConstraint("crypto_rate > 0", name="payment_request_rate_ck"),
        Index("ix_payment_request_worker_status", "worker_id", "status"),
    )


class OrganizationWallet(RelationalBase, TimestampMixin):
    """Funding wallet of an organization.

    Custodial wallets keep an encrypted secret (``ivHex:cipherHex``);
    manual-signing wallets are signed by an external signer.
    """

    __tablename__ = "organization_wallet"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
    )
    crypto_type: Mapped[str] = mapped_column(String, nullable=False, default=CryptoType.XRP.value)
    wallet_address: Mapped[str] = mapped_column(String, nullable=False)
    wallet_secret_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    label: Mapped[str | None] = mapped_column(String, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    requires_manual_signing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint(
            "requires_manual_signing OR wallet_secret_enc IS NOT NULL",
            name="organization_wallet_secret_ck",
        ),
    )


class CryptoAddress(RelationalBase, TimestampMixin):
    """Payout destination registered by a worker."""

    __tablename__ = "crypto_address"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    worker_id: Mapped[UUID] = mapped_column(
        ForeignKey("worker.id", ondelete="CASCADE"),
        nullable=False,
    )
    crypto_type: Mapped[str] = mapped_column(String, nullable=False, default=CryptoType.XRP.value)
    address: Mapped[str] = mapped_column(String, nullable=False)
    label: Mapped[str | None] = mapped_column(String, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    has_trustline: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    default_set_at: Mapped[datetime | None] = mapped_column(nullable=True)


class TokenIssuerConfig(RelationalBase, TimestampMixin):
    """Issuer of an issued-token currency."""

    __tablename__ = "token_issuer_config"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    crypto_type: Mapped[str] = mapped_column(String, nullable=False)
    issuer_address: Mapped[str] = mapped_column(String, nullable=False)
    currency_code: Mapped[str] = mapped_column(String, nullable=False)
    network: Mapped[str] = mapped_column(String, nullable=False, default="testnet")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CryptoSetting(RelationalBase, TimestampMixin):
    """Per-organization payout limits."""

    __tablename__ = "crypto_setting"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    daily_payment_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    daily_amount_limit_usd: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    new_address_lock_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    default_payment_crypto: Mapped[str] = mapped_column(
        String, nullable=False, default=CryptoType.XRP.value
    )
