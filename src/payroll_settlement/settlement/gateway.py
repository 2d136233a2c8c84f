"""Payment transaction gateway.

Builds and signs native-coin and issued-token payments, submits them
through a LedgerClient under a bounded wait, and classifies the outcome:

    tesSUCCESS          -> TransferResult
    any other result    -> PaymentError carrying the result code (not retried)
    no answer in time   -> LedgerTimeoutError (outcome unknown)
    transport failure   -> PaymentError
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Sequence

from xrpl.constants import XRPLException

from payroll_settlement.errors import InvalidDestinationError, LedgerTimeoutError, PaymentError
from payroll_settlement.models.enums import CryptoType
from payroll_settlement.settlement.config import LedgerSubmitConfig
from payroll_settlement.settlement.currency import encode_currency_code
from payroll_settlement.settlement.issuer_config import IssuerConfig
from payroll_settlement.settlement.ledger.base import (
    DROPS_PER_XRP,
    LedgerClient,
    LedgerPayment,
    LedgerRequestError,
    PaymentMemo,
    SignedPayment,
)
from payroll_settlement.settlement.trustline import TrustlineValidator

logger = logging.getLogger(__name__)

SIX_PLACES = Decimal("0.000001")


@dataclass(frozen=True)
class TransferResult:
    """Validated, successful transfer."""

    tx_hash: str
    ledger_index: int
    fee: str
    delivered_amount: str


@dataclass(frozen=True)
class WalletBalances:
    xrp: Decimal
    token: Decimal


def xrp_to_drops(amount: Decimal) -> str:
    """Integral drops string, truncating anything below one drop."""
    truncated = Decimal(amount).quantize(SIX_PLACES, rounding=ROUND_DOWN)
    return str(int(truncated * DROPS_PER_XRP))


def format_token_value(amount: Decimal) -> str:
    """Token value with exactly six decimals."""
    return str(Decimal(amount).quantize(SIX_PLACES, rounding=ROUND_HALF_UP))


class PaymentTransactionGateway:
    """Moves value on the ledger and reads balances and statuses."""

    def __init__(
        self,
        ledger: LedgerClient,
        config: LedgerSubmitConfig | None = None,
        trustlines: TrustlineValidator | None = None,
    ):
        self.ledger = ledger
        self.config = config or LedgerSubmitConfig()
        self.trustlines = trustlines or TrustlineValidator(ledger)

    async def transfer(
        self,
        crypto_type: CryptoType | str,
        source_secret: str,
        destination: str,
        amount: Decimal,
        issuer_config: IssuerConfig | None = None,
        memos: Sequence[PaymentMemo] | None = None,
    ) -> TransferResult:
        """Sign a payment, submit it and wait for its validated outcome.

        Raises:
            PaymentError: Rejected by the ledger, missing issuer, signing
                or transport failure.
            NoTrustlineError / TrustlineLimitError: Token preflight failed.
            LedgerTimeoutError: No final outcome within the timeout.
        """
        signed = await self.prepare_transfer(
            crypto_type, source_secret, destination, amount, issuer_config, memos
        )
        return await self.submit(signed)

    async def prepare_transfer(
        self,
        crypto_type: CryptoType | str,
        source_secret: str,
        destination: str,
        amount: Decimal,
        issuer_config: IssuerConfig | None = None,
        memos: Sequence[PaymentMemo] | None = None,
    ) -> SignedPayment:
        """Build and sign a payment without submitting it.

        The returned hash identifies the payment on the ledger before it
        is sent.
        """
        crypto = CryptoType(crypto_type)
        amount = Decimal(amount)

        if crypto == CryptoType.XRP:
            ledger_amount: str | dict[str, str] = xrp_to_drops(amount)
        else:
            if issuer_config is None:
                raise PaymentError(f"{crypto.value} payments require a token issuer config")
            await self.trustlines.ensure_trustline(
                destination,
                issuer_config.issuer_address,
                issuer_config.currency_code,
                required_amount=amount,
            )
            ledger_amount = {
                "currency": encode_currency_code(issuer_config.currency_code),
                "issuer": issuer_config.issuer_address,
                "value": format_token_value(amount),
            }

        transaction = LedgerPayment(
            destination=destination,
            amount=ledger_amount,
            memos=tuple(memos or ()),
        )

        try:
            return await asyncio.wait_for(
                self.ledger.sign(transaction, source_secret),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise PaymentError(
                f"Ledger did not answer while preparing the {crypto.value} payment"
            ) from e
        except LedgerRequestError as e:
            logger.warning("Could not sign %s payment to %s: %s", crypto.value, destination, e)
            raise PaymentError(f"{crypto.value} payment could not be signed: {e}", e.error) from e
        except (OSError, ValueError, XRPLException) as e:
            logger.warning("Could not sign %s payment to %s: %s", crypto.value, destination, e)
            raise PaymentError(f"{crypto.value} payment could not be signed: {e}") from e

    async def submit(self, signed: SignedPayment) -> TransferResult:
        """Submit a signed payment and classify its outcome.

        Raises:
            PaymentError: Rejected by the ledger or transport failure.
            LedgerTimeoutError: No final outcome within the timeout. Carries
                the transaction hash.
        """
        transaction = signed.transaction
        try:
            outcome = await asyncio.wait_for(
                self.ledger.submit_and_wait(signed),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.warning(
                "Ledger did not confirm payment %s to %s within %ss",
                signed.tx_hash,
                transaction.destination,
                self.config.timeout_seconds,
            )
            raise LedgerTimeoutError(
                f"Ledger did not confirm the payment within {self.config.timeout_seconds}s",
                tx_hash=signed.tx_hash,
            ) from e
        except LedgerRequestError as e:
            logger.warning("Ledger submission of %s failed: %s", signed.tx_hash, e)
            raise PaymentError(f"Payment submission failed: {e}", e.error) from e
        except (OSError, ValueError, XRPLException) as e:
            logger.warning("Ledger submission of %s failed: %s", signed.tx_hash, e)
            raise PaymentError(f"Payment submission failed: {e}") from e

        if not outcome.succeeded:
            logger.info("Payment %s rejected with %s", outcome.tx_hash, outcome.result_code)
            raise PaymentError(f"Payment failed: {outcome.result_code}", outcome.result_code)

        delivered = outcome.delivered_amount
        if delivered is None:
            amount = transaction.amount
            delivered = amount if isinstance(amount, str) else amount["value"]

        return TransferResult(
            tx_hash=outcome.tx_hash,
            ledger_index=outcome.ledger_index,
            fee=outcome.fee,
            delivered_amount=delivered,
        )

    async def get_xrp_balance(self, address: str) -> Decimal:
        """Native balance; 0 for unfunded or unknown accounts."""
        try:
            info = await self.ledger.account_info(address)
        except LedgerRequestError as e:
            if e.error != "actNotFound":
                logger.warning("Failed to get balance for %s: %s", address, e)
            return Decimal("0")
        return info.balance_xrp

    async def get_wallet_balances(
        self, address: str, issuer_config: IssuerConfig | None = None
    ) -> WalletBalances:
        xrp = await self.get_xrp_balance(address)
        token = Decimal("0")
        if issuer_config is not None:
            try:
                token = await self.trustlines.get_token_balance(
                    address, issuer_config.currency_code, issuer_config.issuer_address
                )
            except LedgerRequestError as e:
                logger.warning("Failed to get token balance for %s: %s", address, e)
        return WalletBalances(xrp=xrp, token=token)

    async def get_transaction_status(
        self, tx_hash: str, last_ledger_sequence: int | None = None
    ) -> str:
        """``validated``, ``failed`` or ``pending`` (also on lookup errors).

        With ``last_ledger_sequence``, a transaction the ledger never saw
        is ``failed`` once that ledger has been validated.
        """
        try:
            return await self.ledger.tx_status(tx_hash, last_ledger_sequence)
        except (LedgerRequestError, OSError) as e:
            logger.warning("Failed to get status of %s: %s", tx_hash, e)
            return "pending"

    async def validate_destination(self, address: str) -> None:
        """Raise unless ``address`` is an activated account.

        Raises:
            InvalidDestinationError: Account not found on the ledger.
            PaymentError: The ledger could not be queried.
        """
        try:
            await self.ledger.account_info(address)
        except LedgerRequestError as e:
            if e.error == "actNotFound":
                raise InvalidDestinationError(address) from e
            raise PaymentError(f"Destination validation failed: {e}") from e
