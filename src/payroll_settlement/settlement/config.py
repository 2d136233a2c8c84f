"""Settlement configuration objects.

Explicit configuration for the payout pipeline. No defaults read from the
environment.

Pattern:
    config = SettlementConfig(
        ledger=LedgerSubmitConfig(timeout_seconds=60),
        rate_feed=RateFeedConfig(api_url=..., api_key=...),
        encryption_key=settings.encryption_key,
    )

Rules:
    1. Configuration is explicit; Settings.from_env feeds it at startup.
    2. Immutable after creation (frozen dataclasses).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from payroll_settlement.config import Settings


@dataclass(frozen=True)
class LedgerSubmitConfig:
    """
    Ledger submission behaviour.

    Attributes:
        timeout_seconds: Upper bound on submit-and-wait. Exceeding it leaves
            the outcome unknown. Default 60.
        xrp_reserve: Native coin kept in every funding wallet. Default 10.
        token_fee_headroom_xrp: Native coin required to pay fees on issued
            token transfers. Default 1.
        memo_type: MemoType attached to payout transactions.
    """

    timeout_seconds: float = 60.0
    xrp_reserve: Decimal = Decimal("10")
    token_fee_headroom_xrp: Decimal = Decimal("1")
    memo_type: str = "payroll/payment"

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.xrp_reserve < 0:
            raise ValueError("xrp_reserve cannot be negative")
        if self.token_fee_headroom_xrp < 0:
            raise ValueError("token_fee_headroom_xrp cannot be negative")
        if not self.memo_type:
            raise ValueError("memo_type is required")


@dataclass(frozen=True)
class RateFeedConfig:
    """
    Market price feed configuration.

    Attributes:
        api_url: Simple-price endpoint.
        api_key: Optional demo API key sent as ``x-cg-demo-api-key``.
        timeout_seconds: HTTP timeout. Default 5.
    """

    api_url: str = "https://api.coingecko.com/api/v3/simple/price"
    api_key: str | None = None
    timeout_seconds: float = 5.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.api_url:
            raise ValueError("api_url is required")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")


@dataclass(frozen=True)
class SettlementConfig:
    """
    Complete settlement configuration.

    Attributes:
        ledger: Ledger submission settings.
        rate_feed: Price feed settings.
        encryption_key: Base64 32-byte key for custodial wallet secrets.
        rlusd_issuer_address: Issuer taking precedence over stored configs.
        rlusd_currency_code: Currency code used with the issuer above.
    """

    ledger: LedgerSubmitConfig = field(default_factory=LedgerSubmitConfig)
    rate_feed: RateFeedConfig = field(default_factory=RateFeedConfig)
    encryption_key: str | None = None
    rlusd_issuer_address: str | None = None
    rlusd_currency_code: str = "RLUSD"

    @classmethod
    def from_settings(cls, settings: Settings) -> SettlementConfig:
        return cls(
            ledger=LedgerSubmitConfig(timeout_seconds=settings.ledger_timeout_seconds),
            rate_feed=RateFeedConfig(
                api_url=settings.coingecko_api_url,
                api_key=settings.coingecko_api_key,
                timeout_seconds=settings.rate_feed_timeout_seconds,
            ),
            encryption_key=settings.encryption_key,
            rlusd_issuer_address=settings.rlusd_issuer_address,
            rlusd_currency_code=settings.rlusd_currency_code,
        )
