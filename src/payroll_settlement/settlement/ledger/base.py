"""Base protocol and types for ledger network clients.

All ledger adapters must implement the LedgerClient protocol. The gateway
uses these adapters without knowing the network library's wire details.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

DROPS_PER_XRP = Decimal("1000000")


class LedgerRequestError(Exception):
    """A ledger request was answered with an error.

    ``error`` carries the network error name (e.g. ``actNotFound``).
    """

    def __init__(self, error: str, message: str = ""):
        self.error = error
        super().__init__(message or error)


@dataclass(frozen=True)
class AccountInfo:
    """Funded account state."""

    address: str
    balance_drops: int
    sequence: int = 0

    @property
    def balance_xrp(self) -> Decimal:
        return Decimal(self.balance_drops) / DROPS_PER_XRP


@dataclass(frozen=True)
class TrustLine:
    """Trust line as reported by account_lines.

    ``account`` is the counterparty (the issuer, for a holder's line) and
    ``currency`` is the raw ledger code, possibly 40-char hex. ``frozen``
    is set when either side has frozen the line.
    """

    account: str
    currency: str
    balance: str
    limit: str
    frozen: bool = False


@dataclass(frozen=True)
class PaymentMemo:
    """Plain-text memo; clients hex-encode it on the wire."""

    memo_type: str
    memo_data: str


@dataclass(frozen=True)
class LedgerPayment:
    """Payment to submit.

    ``amount`` is an integral drops string for the native coin, or a
    ``{"currency", "issuer", "value"}`` mapping for an issued token.
    """

    destination: str
    amount: str | dict[str, str]
    memos: tuple[PaymentMemo, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SignedPayment:
    """A signed payment, ready to submit.

    ``tx_hash`` is known before submission. The network drops the
    transaction once ``last_ledger_sequence`` has closed without it.
    ``payload`` is whatever the client needs to submit it.
    """

    tx_hash: str
    transaction: LedgerPayment
    last_ledger_sequence: int | None = None
    payload: Any = None


@dataclass(frozen=True)
class SubmitOutcome:
    """Final outcome of submit-and-wait."""

    tx_hash: str
    result_code: str
    ledger_index: int
    fee: str
    delivered_amount: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.result_code == "tesSUCCESS"


class LedgerClient(Protocol):
    """Protocol for ledger network clients."""

    async def connect(self) -> None:
        """Open the network connection."""
        ...

    async def disconnect(self) -> None:
        """Close the network connection."""
        ...

    async def account_info(self, address: str) -> AccountInfo:
        """Get validated account state.

        Raises:
            LedgerRequestError: ``actNotFound`` for unfunded accounts.
        """
        ...

    async def account_lines(self, address: str, peer: str | None = None) -> list[TrustLine]:
        """List trust lines of an account, optionally toward one peer."""
        ...

    async def sign(self, transaction: LedgerPayment, secret: str) -> SignedPayment:
        """Autofill and sign with the seed, without submitting.

        Raises:
            LedgerRequestError: Bad seed, malformed payment, or the
                network could not autofill it.
        """
        ...

    async def submit_and_wait(self, signed: SignedPayment) -> SubmitOutcome:
        """Submit a signed payment and wait for validation."""
        ...

    async def tx_status(self, tx_hash: str, last_ledger_sequence: int | None = None) -> str:
        """Return ``validated``, ``failed`` or ``pending``.

        A transaction that is not found once ``last_ledger_sequence`` has
        been validated can never apply and counts as ``failed``.
        """
        ...
