"""Payment hash search visibility and verification."""

import logging
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import update

from payroll_settlement.errors import AuthorizationError, NotFoundError, ValidationError
from payroll_settlement.models import PaymentHashLog


@pytest.fixture
def hashes(services):
    return services.payment_hashes


@pytest_asyncio.fixture
async def paid(workflow):
    """A completed custodial XRP payment."""
    request = await workflow.payment_request("XRP")
    return await workflow.execute(request.id)


class TestSearch:
    async def test_worker_sees_own_payment(self, hashes, paid, seeded):
        logs = await hashes.search_payment_hash_for_worker(paid.data_hash, seeded.worker_id)

        assert [log.payment_request_id for log in logs] == [paid.id]
        assert logs[0].canonical_data_json == paid.canonical_data_json

    async def test_digest_is_case_insensitive(self, hashes, paid, seeded):
        logs = await hashes.search_payment_hash_for_worker(
            f"  {paid.data_hash.upper()} ", seeded.worker_id
        )
        assert len(logs) == 1

    async def test_other_worker_sees_nothing(self, hashes, paid, seeded):
        assert await hashes.search_payment_hash_for_worker(paid.data_hash, seeded.other_worker_id) == []

    async def test_admin_sees_organization_payments(self, hashes, paid, seeded):
        own = await hashes.search_payment_hash_for_admin(paid.data_hash, seeded.organization_id)
        other = await hashes.search_payment_hash_for_admin(
            paid.data_hash, seeded.other_organization_id
        )
        assert len(own) == 1
        assert other == []

    async def test_unknown_digest(self, hashes, seeded):
        assert await hashes.search_payment_hash_for_worker("0" * 64, seeded.worker_id) == []

    @pytest.mark.parametrize("digest", ["", "abc", "g" * 64, "0" * 63])
    async def test_malformed_digest(self, hashes, seeded, digest):
        with pytest.raises(ValidationError):
            await hashes.search_payment_hash_for_admin(digest, seeded.organization_id)


class TestVerify:
    async def get_log(self, hashes, paid, seeded) -> PaymentHashLog:
        [log] = await hashes.search_payment_hash_for_admin(paid.data_hash, seeded.organization_id)
        return log

    async def test_first_verification_is_recorded(self, hashes, paid, seeded):
        log = await self.get_log(hashes, paid, seeded)
        assert log.verified_at is None

        verified = await hashes.verify_payment_hash_log(log.id, seeded.organization_id)
        again = await hashes.verify_payment_hash_log(log.id, seeded.organization_id)

        assert verified.verification_result is True
        assert verified.verified_at is not None
        assert again.verified_at == verified.verified_at

    async def test_tampered_data_fails(self, hashes, paid, seeded, datastores, caplog):
        log = await self.get_log(hashes, paid, seeded)
        async with datastores.timeseries() as session:
            await session.execute(
                update(PaymentHashLog)
                .where(PaymentHashLog.id == log.id)
                .values(canonical_data_json=log.canonical_data_json.replace("120", "1200"))
            )

        with caplog.at_level(logging.ERROR):
            verified = await hashes.verify_payment_hash_log(log.id)

        assert verified.verification_result is False
        assert "Hash verification failed" in caplog.text

    async def test_other_organization(self, hashes, paid, seeded):
        log = await self.get_log(hashes, paid, seeded)
        with pytest.raises(AuthorizationError):
            await hashes.verify_payment_hash_log(log.id, seeded.other_organization_id)

    async def test_unknown_log(self, hashes, seeded):
        with pytest.raises(NotFoundError):
            await hashes.verify_payment_hash_log(uuid4(), seeded.organization_id)
        with pytest.raises(NotFoundError):
            await hashes.verify_payment_hash_log(uuid4())
