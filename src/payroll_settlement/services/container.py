"""Wiring of the settlement services around shared resources."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from payroll_settlement.database import Datastores
from payroll_settlement.services.payment_hash_service import PaymentHashService
from payroll_settlement.services.payment_limits import PaymentLimitChecker
from payroll_settlement.services.payment_request_service import PaymentRequestService
from payroll_settlement.services.time_application_service import TimeApplicationService
from payroll_settlement.services.timestamp_service import TimestampService
from payroll_settlement.settlement.config import SettlementConfig
from payroll_settlement.settlement.exchange_rate import ExchangeRateResolver
from payroll_settlement.settlement.gateway import PaymentTransactionGateway
from payroll_settlement.settlement.issuer_config import IssuerConfigResolver
from payroll_settlement.settlement.ledger.base import LedgerClient


@dataclass
class Services:
    datastores: Datastores
    ledger: LedgerClient
    rates: ExchangeRateResolver
    gateway: PaymentTransactionGateway
    timestamps: TimestampService
    applications: TimeApplicationService
    payment_requests: PaymentRequestService
    payment_hashes: PaymentHashService

    async def close(self) -> None:
        await self.rates.close()


def build_services(
    datastores: Datastores,
    ledger: LedgerClient,
    config: SettlementConfig,
    network: str = "testnet",
    http_client: httpx.AsyncClient | None = None,
) -> Services:
    """Build every service from explicitly passed resources."""
    rates = ExchangeRateResolver(config.rate_feed, datastores, http_client=http_client)
    gateway = PaymentTransactionGateway(ledger, config.ledger)
    return Services(
        datastores=datastores,
        ledger=ledger,
        rates=rates,
        gateway=gateway,
        timestamps=TimestampService(datastores),
        applications=TimeApplicationService(datastores),
        payment_requests=PaymentRequestService(
            datastores,
            rates=rates,
            gateway=gateway,
            issuers=IssuerConfigResolver(config, datastores, network),
            limits=PaymentLimitChecker(datastores),
            config=config,
        ),
        payment_hashes=PaymentHashService(datastores),
    )
