"""Issuer resolution for issued-token payouts.

Configured settings take precedence over rows in token_issuer_config.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import select

from payroll_settlement.errors import PaymentError
from payroll_settlement.models.enums import CryptoType
from payroll_settlement.models.relational import TokenIssuerConfig
from payroll_settlement.settlement.config import SettlementConfig

if TYPE_CHECKING:
    from payroll_settlement.database import Datastores


@dataclass(frozen=True)
class IssuerConfig:
    """Issuer of a token, with where the setting came from (env or db)."""

    crypto_type: str
    issuer_address: str
    currency_code: str
    network: str
    source: str


class IssuerConfigResolver:
    def __init__(self, config: SettlementConfig, datastores: Datastores, network: str = "testnet"):
        self.config = config
        self.datastores = datastores
        self.network = network

    def from_settings(self, crypto_type: CryptoType | str) -> IssuerConfig | None:
        if CryptoType(crypto_type) != CryptoType.RLUSD or not self.config.rlusd_issuer_address:
            return None
        return IssuerConfig(
            crypto_type=CryptoType.RLUSD.value,
            issuer_address=self.config.rlusd_issuer_address,
            currency_code=self.config.rlusd_currency_code,
            network=self.network,
            source="env",
        )

    async def get(self, crypto_type: CryptoType | str) -> IssuerConfig | None:
        """Issuer for ``crypto_type``, or None for the native coin or when unset."""
        crypto = CryptoType(crypto_type)
        if crypto == CryptoType.XRP:
            return None
        configured = self.from_settings(crypto)
        if configured is not None:
            return configured

        async with self.datastores.relational() as session:
            row = (
                await session.execute(
                    select(TokenIssuerConfig)
                    .where(TokenIssuerConfig.crypto_type == crypto.value)
                    .where(TokenIssuerConfig.is_active.is_(True))
                    .order_by(TokenIssuerConfig.created_at.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()
        if row is None:
            return None
        return IssuerConfig(
            crypto_type=row.crypto_type,
            issuer_address=row.issuer_address,
            currency_code=row.currency_code,
            network=row.network,
            source="db",
        )

    async def require(self, crypto_type: CryptoType | str) -> IssuerConfig:
        """Issuer for a token payout.

        Raises:
            PaymentError: No issuer is configured.
        """
        issuer = await self.get(crypto_type)
        if issuer is None:
            raise PaymentError(
                f"No issuer configured for {CryptoType(crypto_type).value}. "
                "Set RLUSD_ISSUER_ADDRESS or add a token issuer config."
            )
        return issuer
