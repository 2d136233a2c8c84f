"""SQLAlchemy models for the relational and time-series stores."""

from payroll_settlement.models.base import RelationalBase, TimeseriesBase
from payroll_settlement.models.relational import (
    CryptoAddress,
    CryptoSetting,
    Organization,
    OrganizationWallet,
    PaymentRequest,
    TokenIssuerConfig,
    Worker,
)
from payroll_settlement.models.timeseries import (
    ExchangeRateHistory,
    PaymentHashLog,
    PaymentRequestLog,
    PaymentTransaction,
    TimeApplication,
    TimeApplicationApprovalLog,
    TimeApplicationLog,
    WorkTimestamp,
    WorkTimestampLog,
)

__all__ = [
    "RelationalBase",
    "TimeseriesBase",
    "CryptoAddress",
    "CryptoSetting",
    "Organization",
    "OrganizationWallet",
    "PaymentRequest",
    "TokenIssuerConfig",
    "Worker",
    "ExchangeRateHistory",
    "PaymentHashLog",
    "PaymentRequestLog",
    "PaymentTransaction",
    "TimeApplication",
    "TimeApplicationApprovalLog",
    "TimeApplicationLog",
    "WorkTimestamp",
    "WorkTimestampLog",
]
