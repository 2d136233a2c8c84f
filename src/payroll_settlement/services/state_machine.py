"""Time application and payment request state machines."""

from __future__ import annotations

from payroll_settlement.errors import ConflictError
from payroll_settlement.models.enums import ApplicationStatus, PaymentRequestStatus


class InvalidTransitionError(ConflictError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class _StateMachine:
    VALID_TRANSITIONS: dict[str, list[str]] = {}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)


class TimeApplicationStateMachine(_StateMachine):
    """State machine for time application status transitions.

    Allowed transitions:
    - PENDING → APPROVED
    - PENDING → REJECTED
    - PENDING → CANCELLED (the row is deleted; only the log remains)
    - APPROVED → REQUESTED (linked to a payment request)
    - REQUESTED → PAID

    A rejected application is never reopened; resubmission creates a new one.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        ApplicationStatus.PENDING: [
            ApplicationStatus.APPROVED,
            ApplicationStatus.REJECTED,
            ApplicationStatus.CANCELLED,
        ],
        ApplicationStatus.APPROVED: [ApplicationStatus.REQUESTED],
        ApplicationStatus.REQUESTED: [ApplicationStatus.PAID],
        ApplicationStatus.REJECTED: [],
        ApplicationStatus.PAID: [],
        ApplicationStatus.CANCELLED: [],
    }

    @classmethod
    def can_resubmit(cls, status: str) -> bool:
        return status == ApplicationStatus.REJECTED


class PaymentRequestStateMachine(_StateMachine):
    """State machine for payment request status transitions.

    Allowed transitions:
    - PENDING → PROCESSING (custodial claim)
    - PENDING → COMPLETED (externally signed, hash supplied)
    - PENDING → FAILED
    - PROCESSING → COMPLETED
    - PROCESSING → FAILED
    - PROCESSING → PENDING (ledger outcome unknown)

    COMPLETED and FAILED are terminal.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PaymentRequestStatus.PENDING: [
            PaymentRequestStatus.PROCESSING,
            PaymentRequestStatus.COMPLETED,
            PaymentRequestStatus.FAILED,
        ],
        PaymentRequestStatus.PROCESSING: [
            PaymentRequestStatus.COMPLETED,
            PaymentRequestStatus.FAILED,
            PaymentRequestStatus.PENDING,
        ],
        PaymentRequestStatus.COMPLETED: [],
        PaymentRequestStatus.FAILED: [],
    }
