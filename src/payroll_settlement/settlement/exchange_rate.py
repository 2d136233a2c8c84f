"""Fiat to crypto exchange rates.

The native coin is priced by the CoinGecko simple-price endpoint; the
issued stablecoin is pegged at 1.0 USD. Resolution never raises: an
unavailable rate is reported as ``RATE_UNAVAILABLE`` and callers that
need a rate use ``lock_rate`` / ``convert_usd_to_crypto``, which raise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import TYPE_CHECKING

import httpx

from payroll_settlement.errors import RateUnavailableError
from payroll_settlement.models.enums import CryptoType
from payroll_settlement.models.timeseries import ExchangeRateHistory
from payroll_settlement.settlement.config import RateFeedConfig

if TYPE_CHECKING:
    from payroll_settlement.database import Datastores

logger = logging.getLogger(__name__)

RATE_UNAVAILABLE = Decimal("0")
STABLECOIN_RATE = Decimal("1.0")
CRYPTO_PRECISION = Decimal("0.000001")

COINGECKO_IDS: dict[CryptoType, str] = {CryptoType.XRP: "ripple"}


@dataclass(frozen=True)
class Conversion:
    """Crypto amount for a fiat amount at a locked rate."""

    crypto_amount: Decimal
    rate: Decimal
    source: str


class ExchangeRateResolver:
    """Resolves USD rates and records every rate locked for a payout."""

    def __init__(
        self,
        config: RateFeedConfig | None = None,
        datastores: Datastores | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config or RateFeedConfig()
        self.datastores = datastores
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=self.config.timeout_seconds)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_rate(self, crypto_type: CryptoType | str) -> Decimal:
        """Current USD price of one unit, or RATE_UNAVAILABLE."""
        rate, _ = await self._resolve(CryptoType(crypto_type))
        return rate

    async def lock_rate(self, crypto_type: CryptoType | str) -> tuple[Decimal, str]:
        """Resolve a rate for a payout and append it to the rate history.

        Raises:
            RateUnavailableError: The rate could not be resolved.
        """
        crypto = CryptoType(crypto_type)
        rate, source = await self._resolve(crypto)
        if rate <= 0:
            raise RateUnavailableError(crypto.value)
        await self._record(crypto, rate, source)
        return rate, source

    async def convert_usd_to_crypto(
        self, amount_usd: Decimal, crypto_type: CryptoType | str
    ) -> Conversion:
        """Convert a fiat amount at a freshly locked rate.

        The crypto amount is truncated to six decimals, the smallest unit
        the ledger transfers.
        """
        rate, source = await self.lock_rate(crypto_type)
        crypto_amount = (Decimal(amount_usd) / rate).quantize(CRYPTO_PRECISION, rounding=ROUND_DOWN)
        return Conversion(crypto_amount=crypto_amount, rate=rate, source=source)

    async def _resolve(self, crypto: CryptoType) -> tuple[Decimal, str]:
        if crypto == CryptoType.RLUSD:
            return STABLECOIN_RATE, "fixed"
        return await self._fetch_market_rate(crypto), "coingecko"

    async def _fetch_market_rate(self, crypto: CryptoType) -> Decimal:
        coin_id = COINGECKO_IDS[crypto]
        headers = {"Accept": "application/json"}
        if self.config.api_key:
            headers["x-cg-demo-api-key"] = self.config.api_key

        try:
            response = await self._client.get(
                self.config.api_url,
                params={"ids": coin_id, "vs_currencies": "usd"},
                headers=headers,
                timeout=self.config.timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.warning("Price feed request for %s failed: %s", crypto.value, e)
            return RATE_UNAVAILABLE

        if response.status_code != 200:
            logger.warning(
                "Price feed error for %s: %s %s",
                crypto.value,
                response.status_code,
                response.reason_phrase,
            )
            return RATE_UNAVAILABLE

        try:
            price = response.json()[coin_id]["usd"]
        except (ValueError, KeyError, TypeError):
            logger.warning("Malformed price feed body for %s: %s", crypto.value, response.text)
            return RATE_UNAVAILABLE

        if isinstance(price, bool) or not isinstance(price, (int, float)):
            logger.warning("Invalid rate for %s: %r", crypto.value, price)
            return RATE_UNAVAILABLE
        try:
            rate = Decimal(str(price))
        except InvalidOperation:
            return RATE_UNAVAILABLE
        if rate <= 0:
            logger.warning("Invalid rate for %s: %r", crypto.value, price)
            return RATE_UNAVAILABLE
        return rate

    async def _record(self, crypto: CryptoType, rate: Decimal, source: str) -> None:
        if self.datastores is None:
            return
        async with self.datastores.timeseries() as session:
            session.add(
                ExchangeRateHistory(
                    source=source,
                    crypto_type=crypto.value,
                    fiat_currency="USD",
                    rate=rate,
                )
            )
