"""Trustline preflight for issued-token payouts.

An issued token can only be delivered to an account holding an unfrozen
trust line toward the token's issuer with enough unused limit. Checking before
submitting turns a ledger rejection into a precise business error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from payroll_settlement.errors import (
    NoTrustlineError,
    PaymentError,
    TrustlineFrozenError,
    TrustlineLimitError,
)
from payroll_settlement.models.enums import CryptoType
from payroll_settlement.settlement.currency import normalize_currency_code
from payroll_settlement.settlement.ledger.base import LedgerClient, LedgerRequestError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrustlineStatus:
    """Trust line of a holder toward an issuer."""

    exists: bool
    limit: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    frozen: bool = False

    @property
    def available(self) -> Decimal:
        return self.limit - self.balance


def requires_trustline_validation(crypto_type: CryptoType | str) -> bool:
    """Issued tokens need a trust line; the native coin does not."""
    return CryptoType(crypto_type) == CryptoType.RLUSD


def _to_decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError):
        return Decimal("0")


class TrustlineValidator:
    """Checks holder trust lines through a LedgerClient."""

    def __init__(self, ledger: LedgerClient):
        self.ledger = ledger

    async def check(self, address: str, currency: str, issuer: str) -> TrustlineStatus:
        """Find the holder's line toward ``issuer`` for ``currency``.

        Currency codes are compared in normalized form, so a line reported
        as 40-char hex matches its ASCII code.
        """
        lines = await self.ledger.account_lines(address, peer=issuer)
        wanted = normalize_currency_code(currency)
        for line in lines:
            if line.account == issuer and normalize_currency_code(line.currency) == wanted:
                return TrustlineStatus(
                    exists=True,
                    limit=_to_decimal(line.limit),
                    balance=_to_decimal(line.balance),
                    frozen=line.frozen,
                )
        return TrustlineStatus(exists=False)

    async def ensure_trustline(
        self,
        destination: str,
        issuer: str,
        currency: str,
        required_amount: Decimal | None = None,
    ) -> TrustlineStatus:
        """Raise unless ``destination`` can receive ``required_amount``.

        Raises:
            NoTrustlineError: No line exists, or the account is not activated.
            TrustlineFrozenError: The line is frozen.
            TrustlineLimitError: Limit is zero or too small for the amount.
            PaymentError: The ledger could not be queried.
        """
        label = normalize_currency_code(currency)
        try:
            status = await self.check(destination, currency, issuer)
        except LedgerRequestError as e:
            if e.error == "actNotFound":
                raise NoTrustlineError(destination, label) from e
            logger.warning("Trustline check failed for %s: %s", destination, e)
            raise PaymentError(f"Trustline validation failed: {e}") from e
        except (OSError, ConnectionError) as e:
            logger.warning("Trustline check failed for %s: %s", destination, e)
            raise PaymentError(f"Trustline validation failed: {e}") from e

        if not status.exists:
            raise NoTrustlineError(destination, label)
        if status.frozen:
            raise TrustlineFrozenError(destination, label)
        if status.limit <= 0:
            raise TrustlineLimitError(destination, label, "is zero")
        if required_amount is not None and status.available < required_amount:
            raise TrustlineLimitError(destination, label, "insufficient")
        return status

    async def get_token_balance(self, address: str, currency: str, issuer: str) -> Decimal:
        """Token balance of ``address``, 0 when no line exists."""
        status = await self.check(address, currency, issuer)
        return status.balance if status.exists else Decimal("0")
