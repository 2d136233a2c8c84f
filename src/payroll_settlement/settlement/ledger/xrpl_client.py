"""XRP Ledger client backed by xrpl-py.

Holds one websocket connection for the life of the process; the app
lifespan opens it at startup and closes it at shutdown.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from xrpl.asyncio.clients import AsyncWebsocketClient
from xrpl.asyncio.ledger import get_latest_validated_ledger_sequence
from xrpl.asyncio.transaction import (
    XRPLReliableSubmissionException,
    autofill_and_sign,
    submit_and_wait,
)
from xrpl.constants import XRPLException
from xrpl.models.amounts import IssuedCurrencyAmount
from xrpl.models.exceptions import XRPLModelException
from xrpl.models.requests import AccountInfo as AccountInfoRequest
from xrpl.models.requests import AccountLines, Request, Tx
from xrpl.models.response import Response
from xrpl.models.transactions import Memo, Payment
from xrpl.utils import str_to_hex
from xrpl.wallet import Wallet

from payroll_settlement.settlement.ledger.base import (
    AccountInfo,
    LedgerPayment,
    LedgerRequestError,
    SignedPayment,
    SubmitOutcome,
    TrustLine,
)

logger = logging.getLogger(__name__)

RESULT_CODE = re.compile(r"\bte[cfmlrs][A-Z_]+\b")


def _raise_for_error(response: Response) -> dict[str, Any]:
    if response.is_successful():
        return response.result
    error = str(response.result.get("error", "unknownError"))
    message = str(response.result.get("error_message") or error)
    raise LedgerRequestError(error, message)


def _transaction_result(result: dict[str, Any]) -> str | None:
    meta = result.get("meta")
    if isinstance(meta, dict):
        return meta.get("TransactionResult")
    return None


def _failure_code(message: str) -> str | None:
    """Result code from a reliable-submission failure message."""
    if "LastLedgerSequence" in message:
        return "tefMAX_LEDGER"
    match = RESULT_CODE.search(message)
    if match is None or match.group(0) == "tesSUCCESS":
        return None
    return match.group(0)


def _build_payment(transaction: LedgerPayment, account: str) -> Payment:
    if isinstance(transaction.amount, dict):
        amount: str | IssuedCurrencyAmount = IssuedCurrencyAmount(
            currency=transaction.amount["currency"],
            issuer=transaction.amount["issuer"],
            value=transaction.amount["value"],
        )
    else:
        amount = transaction.amount

    memos = [
        Memo(memo_type=str_to_hex(m.memo_type), memo_data=str_to_hex(m.memo_data))
        for m in transaction.memos
    ]
    return Payment(
        account=account,
        destination=transaction.destination,
        amount=amount,
        memos=memos or None,
    )


class XrplLedgerClient:
    """LedgerClient over an xrpl-py websocket connection."""

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        self._client = AsyncWebsocketClient(endpoint)

    async def connect(self) -> None:
        if not self._client.is_open():
            await self._client.open()
            logger.info("Connected to ledger at %s", self.endpoint)

    async def disconnect(self) -> None:
        if self._client.is_open():
            await self._client.close()
            logger.info("Disconnected from ledger at %s", self.endpoint)

    async def _request(self, request: Request) -> dict[str, Any]:
        await self.connect()
        try:
            response = await self._client.request(request)
        except (XRPLException, ConnectionError) as e:
            raise LedgerRequestError("connectionError", str(e)) from e
        return _raise_for_error(response)

    async def account_info(self, address: str) -> AccountInfo:
        result = await self._request(
            AccountInfoRequest(account=address, ledger_index="validated")
        )
        data = result["account_data"]
        return AccountInfo(
            address=data["Account"],
            balance_drops=int(data["Balance"]),
            sequence=int(data.get("Sequence", 0)),
        )

    async def account_lines(self, address: str, peer: str | None = None) -> list[TrustLine]:
        result = await self._request(
            AccountLines(account=address, peer=peer, ledger_index="validated")
        )
        return [
            TrustLine(
                account=line["account"],
                currency=line["currency"],
                balance=str(line["balance"]),
                limit=str(line["limit"]),
                frozen=bool(line.get("freeze") or line.get("freeze_peer")),
            )
            for line in result.get("lines", [])
        ]

    async def sign(self, transaction: LedgerPayment, secret: str) -> SignedPayment:
        try:
            wallet = Wallet.from_seed(secret)
        except (XRPLException, ValueError) as e:
            raise LedgerRequestError("badSecret", "Secret is not a valid seed.") from e

        await self.connect()
        try:
            payment = _build_payment(transaction, wallet.address)
            signed = await autofill_and_sign(payment, client=self._client, wallet=wallet)
        except (XRPLModelException, ValueError) as e:
            raise LedgerRequestError("malformedTransaction", str(e)) from e
        except ConnectionError as e:
            raise LedgerRequestError("connectionError", str(e)) from e
        except XRPLException as e:
            raise LedgerRequestError("signingFailed", str(e)) from e

        return SignedPayment(
            tx_hash=signed.get_hash(),
            transaction=transaction,
            last_ledger_sequence=signed.last_ledger_sequence,
            payload=signed,
        )

    async def submit_and_wait(self, signed: SignedPayment) -> SubmitOutcome:
        await self.connect()
        try:
            response = await submit_and_wait(signed.payload, self._client)
        except XRPLReliableSubmissionException as e:
            result_code = _failure_code(str(e))
            if result_code is None:
                raise LedgerRequestError("submissionFailed", str(e)) from e
            logger.info("Transaction %s failed with %s", signed.tx_hash, result_code)
            return SubmitOutcome(
                tx_hash=signed.tx_hash,
                result_code=result_code,
                ledger_index=0,
                fee=str(signed.payload.fee or "0"),
            )
        except (XRPLException, ConnectionError) as e:
            raise LedgerRequestError("connectionError", str(e)) from e

        result = _raise_for_error(response)
        tx_json = result.get("tx_json") or result
        meta = result.get("meta") if isinstance(result.get("meta"), dict) else {}
        delivered = meta.get("delivered_amount")
        if isinstance(delivered, dict):
            delivered = delivered.get("value")

        return SubmitOutcome(
            tx_hash=result.get("hash") or signed.tx_hash,
            result_code=_transaction_result(result) or "unknown",
            ledger_index=int(result.get("ledger_index") or 0),
            fee=str(tx_json.get("Fee", "12")),
            delivered_amount=str(delivered) if delivered is not None else None,
            raw=result,
        )

    async def tx_status(self, tx_hash: str, last_ledger_sequence: int | None = None) -> str:
        try:
            result = await self._request(Tx(transaction=tx_hash))
        except LedgerRequestError as e:
            if e.error != "txnNotFound" or last_ledger_sequence is None:
                raise
            try:
                latest = await get_latest_validated_ledger_sequence(self._client)
            except (XRPLException, ConnectionError) as exc:
                raise LedgerRequestError("connectionError", str(exc)) from exc
            return "failed" if latest > last_ledger_sequence else "pending"

        if not result.get("validated"):
            return "pending"
        code = _transaction_result(result)
        if code is None:
            return "pending"
        return "validated" if code == "tesSUCCESS" else "failed"
