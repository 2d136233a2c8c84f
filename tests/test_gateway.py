"""Tests for the payment transaction gateway."""

import json
from decimal import Decimal

import pytest

from payroll_settlement.errors import (
    InvalidDestinationError,
    LedgerTimeoutError,
    NoTrustlineError,
    PaymentError,
    TrustlineFrozenError,
)
from payroll_settlement.settlement.config import LedgerSubmitConfig
from payroll_settlement.settlement.gateway import (
    PaymentTransactionGateway,
    format_token_value,
    xrp_to_drops,
)
from payroll_settlement.settlement.issuer_config import IssuerConfig
from payroll_settlement.settlement.ledger import PaymentMemo, StubLedgerClient


@pytest.fixture
def gateway(ledger):
    return PaymentTransactionGateway(ledger, LedgerSubmitConfig(timeout_seconds=1.0))


@pytest.fixture
def rlusd(accounts):
    return IssuerConfig(
        crypto_type="RLUSD",
        issuer_address=accounts.issuer,
        currency_code="RLUSD",
        network="testnet",
        source="env",
    )


def test_drops_truncate_below_one_drop():
    assert xrp_to_drops(Decimal("1")) == "1000000"
    assert xrp_to_drops(Decimal("120.5")) == "120500000"
    assert xrp_to_drops(Decimal("0.0000019")) == "1"


def test_token_value_has_six_decimals():
    assert format_token_value(Decimal("60")) == "60.000000"
    assert format_token_value(Decimal("1.2345675")) == "1.234568"


class TestTransfer:
    async def test_xrp_transfer(self, gateway, ledger, accounts):
        memo = PaymentMemo("payroll/payment", json.dumps({"paymentRequestId": "x"}))
        result = await gateway.transfer(
            "XRP", accounts.org_wallet_seed, accounts.worker, Decimal("120.5"), memos=[memo]
        )

        assert result.delivered_amount == "120500000"
        assert result.fee == "12"
        submitted = ledger.submitted[0]
        assert submitted["transaction"].amount == "120500000"
        assert submitted["transaction"].memos == (memo,)
        assert await gateway.get_xrp_balance(accounts.worker) == Decimal("140.5")
        assert await gateway.get_transaction_status(result.tx_hash) == "validated"

    async def test_token_transfer_uses_hex_currency(self, gateway, ledger, accounts, rlusd):
        ledger.set_trust_line(accounts.worker, accounts.issuer, "RLUSD", limit="1000")
        ledger.set_trust_line(accounts.org_wallet, accounts.issuer, "RLUSD", limit="1000", balance="500")

        result = await gateway.transfer(
            "RLUSD", accounts.org_wallet_seed, accounts.worker, Decimal("60"), issuer_config=rlusd
        )

        amount = ledger.submitted[0]["transaction"].amount
        assert amount == {
            "currency": "524C555344000000000000000000000000000000",
            "issuer": accounts.issuer,
            "value": "60.000000",
        }
        assert result.delivered_amount == "60.000000"
        balances = await gateway.get_wallet_balances(accounts.worker, rlusd)
        assert balances.token == Decimal("60")

    async def test_token_without_issuer(self, gateway, accounts):
        with pytest.raises(PaymentError):
            await gateway.transfer("RLUSD", accounts.org_wallet_seed, accounts.worker, Decimal("1"))

    async def test_token_preflight_blocks_submission(self, gateway, ledger, accounts, rlusd):
        with pytest.raises(NoTrustlineError):
            await gateway.transfer(
                "RLUSD", accounts.org_wallet_seed, accounts.worker, Decimal("1"), issuer_config=rlusd
            )
        assert ledger.submitted == []

    async def test_ledger_result_code_is_carried(self, gateway, ledger, accounts):
        ledger.fail_next("tecUNFUNDED_PAYMENT")
        with pytest.raises(PaymentError) as exc_info:
            await gateway.transfer("XRP", accounts.org_wallet_seed, accounts.worker, Decimal("1"))
        assert exc_info.value.ledger_error_code == "tecUNFUNDED_PAYMENT"
        assert not isinstance(exc_info.value, LedgerTimeoutError)

    async def test_unknown_destination_result(self, gateway, accounts):
        with pytest.raises(PaymentError) as exc_info:
            await gateway.transfer("XRP", accounts.org_wallet_seed, "rNobody", Decimal("1"))
        assert exc_info.value.ledger_error_code == "tecNO_DST"

    async def test_transport_error(self, gateway, ledger, accounts):
        ledger.raise_next("noNetwork", "websocket closed")
        with pytest.raises(PaymentError) as exc_info:
            await gateway.transfer("XRP", accounts.org_wallet_seed, accounts.worker, Decimal("1"))
        assert exc_info.value.ledger_error_code == "noNetwork"

    async def test_timeout_is_not_a_failure(self, accounts):
        slow = StubLedgerClient(submit_delay_seconds=1.0)
        slow.register_wallet(accounts.org_wallet_seed, accounts.org_wallet, xrp=100)
        slow.fund(accounts.worker, 20)
        gateway = PaymentTransactionGateway(slow, LedgerSubmitConfig(timeout_seconds=0.05))

        with pytest.raises(LedgerTimeoutError) as exc_info:
            await gateway.transfer("XRP", accounts.org_wallet_seed, accounts.worker, Decimal("1"))
        assert exc_info.value.ledger_error_code == "LEDGER_TIMEOUT"
        assert exc_info.value.tx_hash is not None
        assert await gateway.get_transaction_status(exc_info.value.tx_hash) == "pending"

    async def test_timeout_carries_hash_of_late_transaction(self, accounts):
        slow = StubLedgerClient(confirm_delay_seconds=1.0)
        slow.register_wallet(accounts.org_wallet_seed, accounts.org_wallet, xrp=100)
        slow.fund(accounts.worker, 20)
        gateway = PaymentTransactionGateway(slow, LedgerSubmitConfig(timeout_seconds=0.05))

        with pytest.raises(LedgerTimeoutError) as exc_info:
            await gateway.transfer("XRP", accounts.org_wallet_seed, accounts.worker, Decimal("1"))

        assert exc_info.value.tx_hash == slow.submitted[0]["tx_hash"]
        assert await gateway.get_transaction_status(exc_info.value.tx_hash) == "validated"


class TestPrepareTransfer:
    async def test_signs_without_submitting(self, gateway, ledger, accounts):
        signed = await gateway.prepare_transfer(
            "XRP", accounts.org_wallet_seed, accounts.worker, Decimal("2")
        )

        assert len(signed.tx_hash) == 64
        assert signed.last_ledger_sequence is not None
        assert signed.transaction.amount == "2000000"
        assert ledger.submitted == []

        result = await gateway.submit(signed)
        assert result.tx_hash == signed.tx_hash

    async def test_unknown_secret(self, gateway, ledger, accounts):
        with pytest.raises(PaymentError) as exc_info:
            await gateway.prepare_transfer("XRP", "sNotAKnownSeed", accounts.worker, Decimal("1"))
        assert exc_info.value.ledger_error_code == "badSecret"
        assert ledger.submitted == []

    async def test_frozen_destination_line(self, gateway, ledger, accounts, rlusd):
        ledger.set_trust_line(accounts.worker, accounts.issuer, "RLUSD", limit="1000", frozen=True)
        ledger.set_trust_line(accounts.org_wallet, accounts.issuer, "RLUSD", limit="1000", balance="500")

        with pytest.raises(TrustlineFrozenError):
            await gateway.prepare_transfer(
                "RLUSD", accounts.org_wallet_seed, accounts.worker, Decimal("1"), issuer_config=rlusd
            )
        assert ledger.submitted == []

    async def test_frozen_line_is_dry_on_ledger(self, gateway, ledger, accounts, rlusd):
        ledger.set_trust_line(accounts.worker, accounts.issuer, "RLUSD", limit="1000")
        ledger.set_trust_line(accounts.org_wallet, accounts.issuer, "RLUSD", limit="1000", balance="500")
        signed = await gateway.prepare_transfer(
            "RLUSD", accounts.org_wallet_seed, accounts.worker, Decimal("1"), issuer_config=rlusd
        )
        ledger.set_trust_line(accounts.worker, accounts.issuer, "RLUSD", limit="1000", frozen=True)

        with pytest.raises(PaymentError) as exc_info:
            await gateway.submit(signed)
        assert exc_info.value.ledger_error_code == "tecPATH_DRY"


class TestReads:
    async def test_unknown_account_balance_is_zero(self, gateway):
        assert await gateway.get_xrp_balance("rNobody") == Decimal("0")

    async def test_unknown_transaction_is_pending(self, gateway):
        assert await gateway.get_transaction_status("ABC") == "pending"

    async def test_unseen_transaction_fails_after_its_last_ledger(self, gateway, ledger, accounts):
        signed = await gateway.prepare_transfer(
            "XRP", accounts.org_wallet_seed, accounts.worker, Decimal("1")
        )
        last = signed.last_ledger_sequence
        assert await gateway.get_transaction_status(signed.tx_hash, last) == "pending"

        ledger.close_ledgers(21)
        assert await gateway.get_transaction_status(signed.tx_hash, last) == "failed"

    async def test_validate_destination(self, gateway, accounts):
        await gateway.validate_destination(accounts.worker)
        with pytest.raises(InvalidDestinationError) as exc_info:
            await gateway.validate_destination("rNobody")
        assert exc_info.value.ledger_error_code == "tecNO_DST"
