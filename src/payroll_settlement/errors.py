"""Error taxonomy and the uniform operation result.

Services raise the typed errors below. The boundary helper
``run_operation`` turns them into an ``OperationResult`` so callers only
ever see a categorized, human-readable message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Category of a failed operation."""

    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    PAYMENT = "payment"
    INTERNAL = "internal"


class AppError(Exception):
    """Base class for all business errors."""

    kind = ErrorKind.INTERNAL

    def __init__(self, message: str, status_code: int = 500, code: str | None = None):
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class ValidationError(AppError):
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, fields: dict[str, str] | None = None):
        super().__init__(message, 400, "VALIDATION_ERROR")
        self.fields = fields or {}


class AuthorizationError(AppError):
    kind = ErrorKind.AUTHORIZATION

    def __init__(self, message: str = "Access denied"):
        super().__init__(message, 403, "AUTHORIZATION_ERROR")


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"{resource} not found", 404, "NOT_FOUND")


class ConflictError(AppError):
    kind = ErrorKind.CONFLICT

    def __init__(self, message: str):
        super().__init__(message, 409, "CONFLICT")


class PaymentError(AppError):
    """Gateway, trustline, rate or ledger failure.

    ``ledger_error_code`` carries the network result code when one exists
    (e.g. ``tecNO_DST``, ``tecPATH_DRY``).
    """

    kind = ErrorKind.PAYMENT

    def __init__(self, message: str, ledger_error_code: str | None = None):
        super().__init__(message, 502, "PAYMENT_ERROR")
        self.ledger_error_code = ledger_error_code


class InsufficientBalanceError(PaymentError):
    def __init__(self, required: Any, available: Any, currency: str = "XRP"):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance: required {required} {currency}, available {available} {currency}",
            "tecUNFUNDED_PAYMENT",
        )


class InvalidDestinationError(PaymentError):
    def __init__(self, address: str):
        self.address = address
        super().__init__(
            f"Destination address is not activated on the ledger: {address}",
            "tecNO_DST",
        )


class NoTrustlineError(PaymentError):
    def __init__(self, address: str, currency: str):
        self.address = address
        self.currency = currency
        super().__init__(
            f"Destination address has no {currency} trustline: {address}",
            "tecNO_LINE",
        )


class TrustlineLimitError(PaymentError):
    def __init__(self, address: str, currency: str, reason: str = "insufficient"):
        self.address = address
        self.currency = currency
        self.reason = reason
        super().__init__(
            f"Destination {currency} trustline limit {reason}: {address}",
            "tecPATH_DRY",
        )


class TrustlineFrozenError(PaymentError):
    def __init__(self, address: str, currency: str):
        self.address = address
        self.currency = currency
        super().__init__(
            f"Destination {currency} trustline is frozen: {address}",
            "tecPATH_DRY",
        )


class RateUnavailableError(PaymentError):
    def __init__(self, crypto_type: str):
        self.crypto_type = crypto_type
        super().__init__(
            f"Exchange rate for {crypto_type} is unavailable, try again later",
            "RATE_UNAVAILABLE",
        )


class LedgerTimeoutError(PaymentError):
    """The ledger did not report a final outcome in time.

    The transaction may still validate later. This is never a failure.
    """

    def __init__(self, message: str, tx_hash: str | None = None):
        super().__init__(message, "LEDGER_TIMEOUT")
        self.tx_hash = tx_hash


class HashMismatchError(AppError):
    """Stored canonical data no longer matches its recorded digest."""

    def __init__(self, data_hash: str):
        self.data_hash = data_hash
        super().__init__(
            f"Payment data hash verification failed for {data_hash}",
            422,
            "HASH_MISMATCH",
        )


class EncryptionError(AppError):
    def __init__(self, message: str):
        super().__init__(message, 500, "ENCRYPTION_ERROR")


@dataclass(frozen=True)
class OperationResult:
    """Uniform result of a mutating operation."""

    success: bool
    data: Any = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    error_code: str | None = None
    fields: dict[str, str] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None) -> OperationResult:
        return cls(success=True, data=data)

    @classmethod
    def from_error(cls, exc: AppError) -> OperationResult:
        code = exc.code
        if isinstance(exc, PaymentError) and exc.ledger_error_code:
            code = exc.ledger_error_code
        return cls(
            success=False,
            error=exc.message,
            error_kind=exc.kind,
            error_code=code,
            fields=getattr(exc, "fields", {}) or {},
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.success:
            if self.data is not None:
                payload["data"] = self.data
            return payload
        payload["error"] = self.error
        payload["errorKind"] = self.error_kind.value if self.error_kind else None
        if self.error_code:
            payload["errorCode"] = self.error_code
        if self.fields:
            payload["fields"] = self.fields
        return payload


async def run_operation(operation: Awaitable[Any]) -> OperationResult:
    """Await a service call and fold its outcome into an OperationResult."""
    try:
        data = await operation
    except AppError as e:
        logger.info("Operation rejected: %s (%s)", e.message, e.kind.value)
        return OperationResult.from_error(e)
    except Exception:
        logger.exception("Unexpected error during operation")
        return OperationResult(
            success=False,
            error="An unexpected error occurred",
            error_kind=ErrorKind.INTERNAL,
            error_code="INTERNAL_ERROR",
        )
    return OperationResult.ok(data)
