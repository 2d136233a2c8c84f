"""Enumerated values shared by models, services and the API."""

from __future__ import annotations

from enum import Enum


class CryptoType(str, Enum):
    """Payout currency: the ledger's native coin or an issued token."""

    XRP = "XRP"
    RLUSD = "RLUSD"


class TimestampStatus(str, Enum):
    WORK = "WORK"
    REST = "REST"
    END = "END"


class ApplicationLinkStatus(str, Enum):
    """Status of a work timestamp relative to the application that claims it."""

    NONE = "NONE"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"


class ApplicationType(str, Enum):
    SINGLE = "SINGLE"
    BATCH = "BATCH"
    PERIOD = "PERIOD"


class ApplicationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REQUESTED = "REQUESTED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class RejectionCategory(str, Enum):
    TIME_ERROR = "TIME_ERROR"
    MISSING_REST = "MISSING_REST"
    DUPLICATE = "DUPLICATE"
    POLICY_VIOLATION = "POLICY_VIOLATION"
    OTHER = "OTHER"


class PaymentRequestStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class WithdrawalType(str, Enum):
    AUTO = "AUTO"
    MANUAL = "MANUAL"
    ADMIN_APPROVED = "ADMIN_APPROVED"


def sql_in(enum_cls: type[Enum]) -> str:
    """Render enum values for a CHECK constraint."""
    return ", ".join(f"'{member.value}'" for member in enum_cls)
