"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Work timestamp schemas
# ============================================================================


class TimestampCreate(BaseModel):
    """Schema for recording a clock event."""

    status: str
    timestamp: datetime | None = None
    memo: str | None = None


class TimestampUpdate(BaseModel):
    """Schema for editing a clock event. Omitted fields are kept."""

    status: str | None = None
    timestamp: datetime | None = None
    memo: str | None = None


class WorkTimestampResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    worker_id: UUID
    timestamp: datetime
    status: str
    application_status: str
    memo: str | None = None
    created_at: datetime
    updated_at: datetime


class WorkTimestampLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    timestamp_id: UUID
    action: str
    field_name: str | None = None
    old_value: str | None = None
    new_value: str | None = None
    changed_at: datetime


# ============================================================================
# Time application schemas
# ============================================================================


class TimeApplicationCreate(BaseModel):
    """Schema for submitting (or resubmitting) a time application."""

    start_date: datetime
    end_date: datetime
    timestamp_ids: list[UUID]
    memo: str | None = None
    original_application_id: UUID | None = None


class RejectApplicationRequest(BaseModel):
    reason: str
    category: str


class TimeApplicationResponse(BaseModel):
    """Schema for time application response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    worker_id: UUID
    organization_id: UUID
    application_type: str
    start_date: datetime
    end_date: datetime
    total_minutes: int
    total_amount_usd: Decimal
    hourly_rate_at_submission: Decimal
    status: str
    memo: str | None = None
    timestamp_ids: list[str]
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    approved_amount_usd: Decimal | None = None
    hourly_rate_at_approval: Decimal | None = None
    rejection_category: str | None = None
    rejection_reason: str | None = None
    rejected_at: datetime | None = None
    rejected_by: UUID | None = None
    original_application_id: UUID | None = None
    resubmit_count: int = 0
    payment_request_id: UUID | None = None
    created_at: datetime
    updated_at: datetime


class ApplicationDetailResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    application: TimeApplicationResponse
    timestamps: list[WorkTimestampResponse]
    worker_name: str | None = None


# ============================================================================
# Payment request schemas
# ============================================================================


class PaymentRequestCreate(BaseModel):
    """Schema for bundling approved applications into a payout."""

    application_ids: list[UUID]
    crypto_type: str = "XRP"


class ExternalPaymentRequest(BaseModel):
    """Hash of a transaction signed outside the system."""

    transaction_hash: str = Field(min_length=1)


class FailPaymentRequest(BaseModel):
    reason: str = Field(min_length=1)
    code: str | None = None


class PaymentRequestResponse(BaseModel):
    """Schema for payment request response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    worker_id: UUID
    application_ids: list[str]
    amount_usd: Decimal
    crypto_type: str
    crypto_rate: Decimal
    crypto_amount: Decimal
    status: str
    withdrawal_type: str
    transaction_hash: str | None = None
    data_hash: str | None = None
    submitted_tx_hash: str | None = None
    failure_reason: str | None = None
    failure_code: str | None = None
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    processed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class PaymentRequestCreatedResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payment_request: PaymentRequestResponse
    approved_amount_usd: Decimal
    amount_discrepancy_usd: Decimal


class FinalizeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    applications_paid: int
    transaction_recorded: bool
    completion_logged: bool
    hash_logged: bool


# ============================================================================
# Payment hash schemas
# ============================================================================


class PaymentHashLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    payment_request_id: UUID
    data_hash: str
    canonical_data_json: str
    transaction_hash: str | None = None
    verified_at: datetime | None = None
    verification_result: bool | None = None
    created_at: datetime
