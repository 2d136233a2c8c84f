"""Tests for the exchange rate resolver against a mocked price feed."""

from decimal import Decimal

import pytest

from payroll_settlement.errors import RateUnavailableError
from payroll_settlement.settlement.config import RateFeedConfig
from payroll_settlement.settlement.exchange_rate import (
    RATE_UNAVAILABLE,
    STABLECOIN_RATE,
    ExchangeRateResolver,
)


@pytest.fixture
def resolver(rate_client, settlement_config):
    return ExchangeRateResolver(settlement_config.rate_feed, http_client=rate_client)


class TestGetRate:
    async def test_market_rate(self, resolver, price_feed):
        assert await resolver.get_rate("XRP") == Decimal("0.5")

        request = price_feed.requests[0]
        assert request.url.params["ids"] == "ripple"
        assert request.url.params["vs_currencies"] == "usd"

    async def test_stablecoin_is_pegged_without_a_request(self, resolver, price_feed):
        assert await resolver.get_rate("RLUSD") == STABLECOIN_RATE
        assert price_feed.requests == []

    async def test_api_key_header(self, rate_client, price_feed, settlement_config):
        config = RateFeedConfig(api_url=settlement_config.rate_feed.api_url, api_key="demo-key")
        keyed = ExchangeRateResolver(config, http_client=rate_client)
        await keyed.get_rate("XRP")
        assert price_feed.requests[0].headers["x-cg-demo-api-key"] == "demo-key"

    async def test_non_200_is_unavailable(self, resolver, price_feed):
        price_feed.status_code = 429
        assert await resolver.get_rate("XRP") == RATE_UNAVAILABLE

    async def test_transport_error_is_unavailable(self, resolver, price_feed):
        price_feed.fail_transport = True
        assert await resolver.get_rate("XRP") == RATE_UNAVAILABLE

    @pytest.mark.parametrize(
        "body",
        [{}, {"ripple": {}}, {"ripple": {"usd": "0.5"}}, {"ripple": {"usd": True}}, [1, 2]],
    )
    async def test_malformed_body_is_unavailable(self, resolver, price_feed, body):
        price_feed.body = body
        assert await resolver.get_rate("XRP") == RATE_UNAVAILABLE

    @pytest.mark.parametrize("price", [0, -1.5])
    async def test_non_positive_rate_is_unavailable(self, resolver, price_feed, price):
        price_feed.prices["ripple"] = price
        assert await resolver.get_rate("XRP") == RATE_UNAVAILABLE


class TestConvert:
    async def test_truncates_to_six_decimals(self, resolver, price_feed):
        price_feed.prices["ripple"] = 0.3
        conversion = await resolver.convert_usd_to_crypto(Decimal("10.00"), "XRP")
        # 10 / 0.3 = 33.333333...
        assert conversion.crypto_amount == Decimal("33.333333")
        assert conversion.rate == Decimal("0.3")
        assert conversion.source == "coingecko"

    async def test_stablecoin_one_to_one(self, resolver):
        conversion = await resolver.convert_usd_to_crypto(Decimal("60.00"), "RLUSD")
        assert conversion.crypto_amount == Decimal("60.000000")
        assert conversion.source == "fixed"

    async def test_unavailable_rate_raises(self, resolver, price_feed):
        price_feed.status_code = 500
        with pytest.raises(RateUnavailableError) as exc_info:
            await resolver.convert_usd_to_crypto(Decimal("10"), "XRP")
        assert exc_info.value.ledger_error_code == "RATE_UNAVAILABLE"
