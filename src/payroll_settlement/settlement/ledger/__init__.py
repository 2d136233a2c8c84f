"""Ledger network clients."""

from payroll_settlement.settlement.ledger.base import (
    AccountInfo,
    LedgerClient,
    LedgerPayment,
    LedgerRequestError,
    PaymentMemo,
    SignedPayment,
    SubmitOutcome,
    TrustLine,
)
from payroll_settlement.settlement.ledger.stub import StubLedgerClient
from payroll_settlement.settlement.ledger.xrpl_client import XrplLedgerClient

__all__ = [
    "AccountInfo",
    "LedgerClient",
    "LedgerPayment",
    "LedgerRequestError",
    "PaymentMemo",
    "SignedPayment",
    "SubmitOutcome",
    "TrustLine",
    "StubLedgerClient",
    "XrplLedgerClient",
]
