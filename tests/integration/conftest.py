"""Integration fixtures: both datastores on file-backed SQLite."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from payroll_settlement.api.app import create_app
from payroll_settlement.config import Settings
from payroll_settlement.database import Datastores
from payroll_settlement.models import (
    CryptoAddress,
    Organization,
    OrganizationWallet,
    PaymentRequest,
    TimeApplication,
    Worker,
)
from payroll_settlement.services import Services, build_services
from payroll_settlement.settlement.encryption import encrypt_secret

BASE_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Seeded:
    """Ids of the rows every integration test starts with."""

    organization_id: UUID
    worker_id: UUID
    admin_id: UUID
    address_id: UUID
    wallet_id: UUID
    other_organization_id: UUID
    other_worker_id: UUID
    other_admin_id: UUID


async def seed(datastores: Datastores, accounts) -> Seeded:
    """Two organizations with one worker each; the first can be paid."""
    seeded = Seeded(
        organization_id=uuid4(),
        worker_id=uuid4(),
        admin_id=uuid4(),
        address_id=uuid4(),
        wallet_id=uuid4(),
        other_organization_id=uuid4(),
        other_worker_id=uuid4(),
        other_admin_id=uuid4(),
    )
    async with datastores.relational() as session:
        session.add_all(
            [
                Organization(id=seeded.organization_id, name="Harbor Cafe"),
                Organization(id=seeded.other_organization_id, name="Night Market"),
            ]
        )
        await session.flush()
        session.add_all(
            [
                Worker(
                    id=seeded.worker_id,
                    organization_id=seeded.organization_id,
                    name="Mika Tanaka",
                    email="mika@example.com",
                    hourly_rate_usd=Decimal("30.00"),
                ),
                Worker(
                    id=seeded.other_worker_id,
                    organization_id=seeded.other_organization_id,
                    name="Sam Ortiz",
                    email="sam@example.com",
                    hourly_rate_usd=Decimal("25.00"),
                ),
            ]
        )
        await session.flush()
        session.add_all(
            [
                CryptoAddress(
                    id=seeded.address_id,
                    worker_id=seeded.worker_id,
                    address=accounts.worker,
                    label="main",
                    is_default=True,
                    default_set_at=datetime.now(timezone.utc) - timedelta(days=2),
                ),
                OrganizationWallet(
                    id=seeded.wallet_id,
                    organization_id=seeded.organization_id,
                    wallet_address=accounts.org_wallet,
                    wallet_secret_enc=encrypt_secret(
                        accounts.org_wallet_seed, accounts.encryption_key
                    ),
                    label="payroll",
                    is_default=True,
                ),
            ]
        )
    return seeded


@dataclass
class Workflow:
    """Drives a worker from clock events to a payment request."""

    services: Services
    seeded: Seeded

    async def shift(
        self, start: datetime = BASE_TIME, hours: float = 2, worker_id: UUID | None = None
    ) -> list[UUID]:
        worker_id = worker_id or self.seeded.worker_id
        work = await self.services.timestamps.create_work_timestamp(worker_id, "WORK", start)
        end = await self.services.timestamps.create_work_timestamp(
            worker_id, "END", start + timedelta(hours=hours)
        )
        return [work.id, end.id]

    async def submit(
        self, start: datetime = BASE_TIME, hours: float = 2, worker_id: UUID | None = None
    ) -> TimeApplication:
        worker_id = worker_id or self.seeded.worker_id
        ids = await self.shift(start, hours, worker_id)
        return await self.services.applications.create_time_application(
            worker_id, start, start + timedelta(hours=hours), ids
        )

    async def approved(self, start: datetime = BASE_TIME, hours: float = 2) -> TimeApplication:
        application = await self.submit(start, hours)
        return await self.services.applications.approve_application(
            application.id, self.seeded.organization_id, self.seeded.admin_id
        )

    async def payment_request(
        self, crypto_type: str = "XRP", start: datetime = BASE_TIME, hours: float = 2
    ) -> PaymentRequest:
        """A PENDING request over one approved 2h shift (60.00 USD)."""
        application = await self.approved(start, hours)
        created = await self.services.payment_requests.create_payment_request(
            self.seeded.worker_id, [application.id], crypto_type
        )
        return created.payment_request

    async def execute(self, payment_request_id: UUID) -> PaymentRequest:
        return await self.services.payment_requests.complete_custodial_payment(
            payment_request_id, self.seeded.organization_id, self.seeded.admin_id
        )


def sqlite_urls(tmp_path) -> tuple[str, str]:
    return (
        f"sqlite+aiosqlite:///{tmp_path / 'relational.db'}",
        f"sqlite+aiosqlite:///{tmp_path / 'timeseries.db'}",
    )


@pytest_asyncio.fixture
async def datastores(tmp_path) -> AsyncGenerator[Datastores, None]:
    relational_url, timeseries_url = sqlite_urls(tmp_path)
    stores = Datastores(relational_url, timeseries_url)
    await stores.create_all()
    yield stores
    await stores.dispose()


@pytest_asyncio.fixture
async def services(datastores, ledger, settlement_config, rate_client) -> AsyncGenerator[Services, None]:
    built = build_services(datastores, ledger, settlement_config, http_client=rate_client)
    yield built
    await built.close()


@pytest_asyncio.fixture
async def seeded(datastores, accounts) -> Seeded:
    return await seed(datastores, accounts)


@pytest.fixture
def workflow(services, seeded) -> Workflow:
    return Workflow(services=services, seeded=seeded)


@dataclass
class ApiContext:
    client: AsyncClient
    services: Services
    seeded: Seeded

    def worker_headers(self, worker_id: UUID | None = None) -> dict[str, str]:
        return {"X-Worker-Id": str(worker_id or self.seeded.worker_id)}

    def admin_headers(
        self, organization_id: UUID | None = None, admin_id: UUID | None = None
    ) -> dict[str, str]:
        return {
            "X-Organization-Id": str(organization_id or self.seeded.organization_id),
            "X-Admin-Id": str(admin_id or self.seeded.admin_id),
        }


@pytest_asyncio.fixture
async def api(tmp_path, ledger, rate_client, accounts) -> AsyncGenerator[ApiContext, None]:
    """HTTP client against an app running its lifespan on SQLite stores."""
    relational_url, timeseries_url = sqlite_urls(tmp_path)
    settings = replace(
        Settings.from_env(),
        relational_database_url=relational_url,
        timeseries_database_url=timeseries_url,
        encryption_key=accounts.encryption_key,
        rlusd_issuer_address=accounts.issuer,
        debug=True,
    )
    app = create_app(settings=settings, ledger=ledger, rate_client=rate_client)
    async with app.router.lifespan_context(app):
        services = app.state.services
        seeded = await seed(services.datastores, accounts)
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield ApiContext(client=client, services=services, seeded=seeded)
