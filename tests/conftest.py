"""Pytest fixtures for settlement engine tests."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from payroll_settlement.settlement.config import (
    LedgerSubmitConfig,
    RateFeedConfig,
    SettlementConfig,
)
from payroll_settlement.settlement.ledger import StubLedgerClient

ENCRYPTION_KEY = base64.b64encode(bytes(range(32))).decode()
PRICE_FEED_URL = "https://prices.test/api/v3/simple/price"

ORG_WALLET_SEED = "sEdOrgWalletTestSeed00000000"
ORG_WALLET_ADDRESS = "rOrgWa11etTestAddress000000000000"
WORKER_ADDRESS = "rWorkerTestAddress00000000000000"
ISSUER_ADDRESS = "rRLUSDIssuerTestAddress000000000"


@dataclass(frozen=True)
class Accounts:
    """Ledger accounts known to the stub ledger."""

    org_wallet_seed: str = ORG_WALLET_SEED
    org_wallet: str = ORG_WALLET_ADDRESS
    worker: str = WORKER_ADDRESS
    issuer: str = ISSUER_ADDRESS
    encryption_key: str = ENCRYPTION_KEY


@dataclass
class PriceFeed:
    """Programmable CoinGecko simple-price endpoint."""

    prices: dict[str, object] = field(default_factory=lambda: {"ripple": 0.5})
    status_code: int = 200
    body: object | None = None
    fail_transport: bool = False
    requests: list[httpx.Request] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_transport:
            raise httpx.ConnectError("price feed unreachable", request=request)
        if self.body is not None:
            return httpx.Response(self.status_code, json=self.body)
        coin_id = request.url.params["ids"]
        if coin_id not in self.prices:
            return httpx.Response(self.status_code, json={})
        return httpx.Response(self.status_code, json={coin_id: {"usd": self.prices[coin_id]}})


@pytest.fixture
def price_feed() -> PriceFeed:
    return PriceFeed()


@pytest_asyncio.fixture
async def rate_client(price_feed: PriceFeed):
    client = httpx.AsyncClient(transport=httpx.MockTransport(price_feed.handler))
    yield client
    await client.aclose()


@pytest.fixture
def accounts() -> Accounts:
    return Accounts()


@pytest.fixture
def ledger() -> StubLedgerClient:
    """Stub ledger with a funded org wallet and an activated worker account."""
    stub = StubLedgerClient()
    stub.register_wallet(ORG_WALLET_SEED, ORG_WALLET_ADDRESS, xrp=Decimal("1000"))
    stub.fund(WORKER_ADDRESS, Decimal("20"))
    stub.fund(ISSUER_ADDRESS, Decimal("100"))
    return stub


@pytest.fixture
def settlement_config() -> SettlementConfig:
    return SettlementConfig(
        ledger=LedgerSubmitConfig(timeout_seconds=2.0),
        rate_feed=RateFeedConfig(api_url=PRICE_FEED_URL, timeout_seconds=1.0),
        encryption_key=ENCRYPTION_KEY,
        rlusd_issuer_address=ISSUER_ADDRESS,
        rlusd_currency_code="RLUSD",
    )
