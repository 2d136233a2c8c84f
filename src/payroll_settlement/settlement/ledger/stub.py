"""In-memory ledger client for local development and testing.

Replace with XrplLedgerClient against testnet or mainnet for real payouts.
"""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import replace
from decimal import Decimal
from typing import Any

from payroll_settlement.settlement.currency import normalize_currency_code
from payroll_settlement.settlement.ledger.base import (
    DROPS_PER_XRP,
    AccountInfo,
    LedgerPayment,
    LedgerRequestError,
    SignedPayment,
    SubmitOutcome,
    TrustLine,
)

STUB_FEE_DROPS = 12
LEDGER_OFFSET = 20


class StubLedgerClient:
    """Stub ledger for development.

    Accounts, trust lines and signing seeds are registered up front. A
    submitted payment moves balances the way the network would and reports
    ``tesSUCCESS`` unless a result code was queued with ``fail_next``.
    """

    def __init__(self, submit_delay_seconds: float = 0.0, confirm_delay_seconds: float = 0.0):
        """Initialize stub ledger.

        Args:
            submit_delay_seconds: Wait before a submission reaches the
                ledger, to exercise timeouts where nothing was applied.
            confirm_delay_seconds: Wait after the payment is applied and
                before it is confirmed, to exercise late confirmations.
        """
        self.submit_delay_seconds = submit_delay_seconds
        self.confirm_delay_seconds = confirm_delay_seconds
        self.connected = False
        self.submitted: list[dict[str, Any]] = []
        self._balances: dict[str, int] = {}
        self._lines: dict[str, list[TrustLine]] = {}
        self._seeds: dict[str, str] = {}
        self._queued_results: list[str] = []
        self._queued_errors: list[LedgerRequestError] = []
        self._transactions: dict[str, str] = {}
        self._ledger_index = 1000
        self._signed_count = 0

    # Setup helpers

    def fund(self, address: str, xrp: Decimal | int | str) -> None:
        self._balances[address] = int(Decimal(str(xrp)) * DROPS_PER_XRP)

    def register_wallet(self, seed: str, address: str, xrp: Decimal | int | str = 0) -> None:
        self._seeds[seed] = address
        self.fund(address, xrp)

    def set_trust_line(
        self,
        holder: str,
        issuer: str,
        currency: str,
        limit: str,
        balance: str = "0",
        frozen: bool = False,
    ) -> None:
        lines = [
            line
            for line in self._lines.get(holder, [])
            if not (line.account == issuer and line.currency == currency)
        ]
        lines.append(
            TrustLine(
                account=issuer, currency=currency, balance=balance, limit=limit, frozen=frozen
            )
        )
        self._lines[holder] = lines

    def close_ledgers(self, count: int = 1) -> None:
        """Advance the validated ledger without applying anything."""
        self._ledger_index += count

    def fail_next(self, result_code: str) -> None:
        """Make the next submission validate with a non-success result."""
        self._queued_results.append(result_code)

    def raise_next(self, error: str, message: str = "") -> None:
        """Make the next submission fail at the transport level."""
        self._queued_errors.append(LedgerRequestError(error, message))

    # LedgerClient protocol

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def account_info(self, address: str) -> AccountInfo:
        if address not in self._balances:
            raise LedgerRequestError("actNotFound", "Account not found.")
        return AccountInfo(address=address, balance_drops=self._balances[address])

    async def account_lines(self, address: str, peer: str | None = None) -> list[TrustLine]:
        if address not in self._balances:
            raise LedgerRequestError("actNotFound", "Account not found.")
        lines = self._lines.get(address, [])
        if peer is not None:
            lines = [line for line in lines if line.account == peer]
        return list(lines)

    async def sign(self, transaction: LedgerPayment, secret: str) -> SignedPayment:
        source = self._seeds.get(secret)
        if source is None:
            raise LedgerRequestError("badSecret", "Secret does not match a known wallet.")

        self._signed_count += 1
        amount = transaction.amount
        value = amount["value"] if isinstance(amount, dict) else amount
        tx_hash = hashlib.sha256(
            f"{source}:{transaction.destination}:{value}:{self._signed_count}".encode()
        ).hexdigest().upper()
        return SignedPayment(
            tx_hash=tx_hash,
            transaction=transaction,
            last_ledger_sequence=self._ledger_index + LEDGER_OFFSET,
            payload=source,
        )

    async def submit_and_wait(self, signed: SignedPayment) -> SubmitOutcome:
        if self.submit_delay_seconds:
            await asyncio.sleep(self.submit_delay_seconds)
        if self._queued_errors:
            raise self._queued_errors.pop(0)

        source = signed.payload
        transaction = signed.transaction
        self._ledger_index += 1

        result_code = self._apply(source, transaction)
        self._transactions[signed.tx_hash] = result_code
        self.submitted.append(
            {
                "source": source,
                "transaction": transaction,
                "tx_hash": signed.tx_hash,
                "result": result_code,
            }
        )

        if self.confirm_delay_seconds:
            await asyncio.sleep(self.confirm_delay_seconds)

        delivered: str | None = None
        if result_code == "tesSUCCESS":
            amount = transaction.amount
            delivered = amount["value"] if isinstance(amount, dict) else amount

        return SubmitOutcome(
            tx_hash=signed.tx_hash,
            result_code=result_code,
            ledger_index=self._ledger_index,
            fee=str(STUB_FEE_DROPS),
            delivered_amount=delivered,
        )

    async def tx_status(self, tx_hash: str, last_ledger_sequence: int | None = None) -> str:
        result = self._transactions.get(tx_hash)
        if result is None:
            if last_ledger_sequence is not None and self._ledger_index > last_ledger_sequence:
                return "failed"
            return "pending"
        return "validated" if result == "tesSUCCESS" else "failed"

    def _apply(self, source: str, transaction: LedgerPayment) -> str:
        if self._queued_results:
            self._balances[source] -= STUB_FEE_DROPS
            return self._queued_results.pop(0)
        if transaction.destination not in self._balances:
            return "tecNO_DST"

        amount = transaction.amount
        if isinstance(amount, dict):
            return self._apply_token(source, transaction.destination, amount)

        drops = int(amount)
        if self._balances[source] < drops + STUB_FEE_DROPS:
            return "tecUNFUNDED_PAYMENT"
        self._balances[source] -= drops + STUB_FEE_DROPS
        self._balances[transaction.destination] += drops
        return "tesSUCCESS"

    def _apply_token(self, source: str, destination: str, amount: dict[str, str]) -> str:
        value = Decimal(amount["value"])
        dest_line = self._find_line(destination, amount["issuer"], amount["currency"])
        if dest_line is None:
            return "tecNO_LINE"
        if dest_line.frozen:
            return "tecPATH_DRY"
        if Decimal(dest_line.limit) - Decimal(dest_line.balance) < value:
            return "tecPATH_DRY"

        source_line = self._find_line(source, amount["issuer"], amount["currency"])
        if source != amount["issuer"]:
            if source_line is None or Decimal(source_line.balance) < value:
                return "tecPATH_PARTIAL"
            self._replace_line(
                source, replace(source_line, balance=str(Decimal(source_line.balance) - value))
            )

        self._balances[source] -= STUB_FEE_DROPS
        self._replace_line(
            destination, replace(dest_line, balance=str(Decimal(dest_line.balance) + value))
        )
        return "tesSUCCESS"

    def _find_line(self, holder: str, issuer: str, currency: str) -> TrustLine | None:
        wanted = normalize_currency_code(currency)
        for line in self._lines.get(holder, []):
            if line.account == issuer and normalize_currency_code(line.currency) == wanted:
                return line
        return None

    def _replace_line(self, holder: str, new_line: TrustLine) -> None:
        self._lines[holder] = [
            new_line
            if line.account == new_line.account and line.currency == new_line.currency
            else line
            for line in self._lines.get(holder, [])
        ]
