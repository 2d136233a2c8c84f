"""Settlement engine services."""

from payroll_settlement.services.container import Services, build_services
from payroll_settlement.services.payment_hash_service import PaymentHashService
from payroll_settlement.services.payment_limits import PaymentLimitChecker
from payroll_settlement.services.payment_request_service import (
    FinalizeResult,
    PaymentRequestCreated,
    PaymentRequestService,
)
from payroll_settlement.services.saga import Saga
from payroll_settlement.services.state_machine import (
    InvalidTransitionError,
    PaymentRequestStateMachine,
    TimeApplicationStateMachine,
)
from payroll_settlement.services.time_application_service import (
    ApplicationDetail,
    TimeApplicationService,
)
from payroll_settlement.services.timestamp_service import TimestampService

__all__ = [
    "ApplicationDetail",
    "FinalizeResult",
    "InvalidTransitionError",
    "PaymentHashService",
    "PaymentLimitChecker",
    "PaymentRequestCreated",
    "PaymentRequestService",
    "PaymentRequestStateMachine",
    "Saga",
    "Services",
    "TimeApplicationService",
    "TimeApplicationStateMachine",
    "TimestampService",
    "build_services",
]
