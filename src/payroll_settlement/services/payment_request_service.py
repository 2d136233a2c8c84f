"""Payment request orchestration.

PENDING --(claim)--> PROCESSING --(success)--> COMPLETED
PENDING/PROCESSING --(failure)--> FAILED
PENDING --(externally signed, hash supplied)--> COMPLETED
PROCESSING --(ledger outcome unknown)--> PENDING (REVERTED log)

Every PaymentRequest transition is a conditional update on the expected
current status. A rowcount of 0 means another caller won the race and the
operation stops with ConflictError before any further effect.

Completion touches both stores. The relational status change is the point
of no return; the time-series side (applications PAID, transaction record,
logs) is written by ``_finalize``, which only inserts what is missing and
can be re-run by ``reconcile_completed_payment``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Sequence
from uuid import UUID, uuid4

from sqlalchemy import delete, select, update

from payroll_settlement.errors import (
    AuthorizationError,
    ConflictError,
    InsufficientBalanceError,
    LedgerTimeoutError,
    NotFoundError,
    PaymentError,
    ValidationError,
)
from payroll_settlement.models.base import as_utc, utcnow
from payroll_settlement.models.enums import (
    ApplicationLinkStatus,
    ApplicationStatus,
    CryptoType,
    PaymentRequestStatus,
)
from payroll_settlement.models.relational import (
    CryptoAddress,
    OrganizationWallet,
    PaymentRequest,
    Worker,
)
from payroll_settlement.models.timeseries import (
    PaymentHashLog,
    PaymentRequestLog,
    PaymentTransaction,
    TimeApplication,
    TimeApplicationLog,
    WorkTimestamp,
)
from payroll_settlement.services.saga import Saga
from payroll_settlement.services.state_machine import (
    InvalidTransitionError,
    PaymentRequestStateMachine,
)
from payroll_settlement.services.time_application_service import (
    application_snapshot,
    timestamp_uuids,
)
from payroll_settlement.settlement.encryption import decrypt_secret
from payroll_settlement.settlement.hashing import (
    PaymentHashFacts,
    create_canonical_payment_data,
    hash_payment_data,
)
from payroll_settlement.settlement.ledger.base import PaymentMemo

if TYPE_CHECKING:
    from payroll_settlement.database import Datastores
    from payroll_settlement.services.payment_limits import PaymentLimitChecker
    from payroll_settlement.settlement.config import SettlementConfig
    from payroll_settlement.settlement.exchange_rate import ExchangeRateResolver
    from payroll_settlement.settlement.gateway import PaymentTransactionGateway, TransferResult
    from payroll_settlement.settlement.issuer_config import IssuerConfig, IssuerConfigResolver

logger = logging.getLogger(__name__)


def iso_timestamp(value: datetime) -> str:
    """UTC timestamp with millisecond precision and a ``Z`` suffix."""
    value = as_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class PaymentRequestCreated:
    """A new request plus the approval-rate total of its applications.

    ``amount_usd`` on the request is the submission-rate total that is paid.
    """

    payment_request: PaymentRequest
    approved_amount_usd: Decimal

    @property
    def amount_discrepancy_usd(self) -> Decimal:
        return self.approved_amount_usd - Decimal(self.payment_request.amount_usd)


@dataclass(frozen=True)
class FinalizeResult:
    """What a finalize pass wrote. All falsy means already consistent."""

    applications_paid: int
    transaction_recorded: bool
    completion_logged: bool
    hash_logged: bool

    @property
    def changed(self) -> bool:
        return bool(
            self.applications_paid
            or self.transaction_recorded
            or self.completion_logged
            or self.hash_logged
        )


@dataclass(frozen=True)
class _Preflight:
    address: CryptoAddress
    wallet: OrganizationWallet
    issuer: IssuerConfig | None


class PaymentRequestService:
    """Service for payment request settlement.

    Operations:
    - create_payment_request: bundle approved applications at a locked rate
    - complete_custodial_payment: sign and submit from the org wallet
    - complete_external_payment: record a payment signed outside the system
    - mark_payment_failed: terminal failure, applications stay REQUESTED
    - reconcile_completed_payment: re-run finalization for a COMPLETED request
    """

    def __init__(
        self,
        datastores: Datastores,
        rates: ExchangeRateResolver,
        gateway: PaymentTransactionGateway,
        issuers: IssuerConfigResolver,
        limits: PaymentLimitChecker,
        config: SettlementConfig,
    ):
        self.datastores = datastores
        self.rates = rates
        self.gateway = gateway
        self.issuers = issuers
        self.limits = limits
        self.config = config

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_payment_request(
        self,
        worker_id: UUID,
        application_ids: Sequence[UUID],
        crypto_type: CryptoType | str,
    ) -> PaymentRequestCreated:
        """Create a PENDING request over the worker's approved applications.

        Raises:
            ValidationError: Bad crypto type, empty or duplicated ids, or an
                application that is missing or not the worker's.
            ConflictError: An application is not APPROVED or already linked.
            RateUnavailableError: No rate could be locked. Nothing is written.
        """
        try:
            crypto = CryptoType(crypto_type)
        except ValueError as e:
            raise ValidationError(
                f"Unsupported crypto type: {crypto_type}", {"cryptoType": "must be XRP or RLUSD"}
            ) from e

        ids = [UUID(str(app_id)) for app_id in application_ids]
        if not ids:
            raise ValidationError("At least one application is required", {"applicationIds": "empty"})
        if len(set(ids)) != len(ids):
            raise ValidationError("Application ids must be unique", {"applicationIds": "duplicated"})

        async with self.datastores.relational() as session:
            worker = await session.get(Worker, worker_id)
        if worker is None:
            raise NotFoundError("Worker")

        async with self.datastores.timeseries() as session:
            applications = list(
                (
                    await session.execute(
                        select(TimeApplication).where(TimeApplication.id.in_(ids))
                    )
                ).scalars()
            )

        if len(applications) != len(ids) or any(app.worker_id != worker_id for app in applications):
            raise ValidationError(
                "Applications not found for this worker", {"applicationIds": "unknown or not owned"}
            )
        for app in applications:
            if app.status != ApplicationStatus.APPROVED.value or app.payment_request_id is not None:
                raise ConflictError(f"Application {app.id} is {app.status} and cannot be requested")

        amount_usd = sum((Decimal(app.total_amount_usd) for app in applications), Decimal("0"))
        approved_amount_usd = sum(
            (
                Decimal(app.approved_amount_usd)
                if app.approved_amount_usd is not None
                else Decimal(app.total_amount_usd)
                for app in applications
            ),
            Decimal("0"),
        )

        conversion = await self.rates.convert_usd_to_crypto(amount_usd, crypto)
        if conversion.crypto_amount <= 0:
            raise ValidationError(
                f"Amount {amount_usd} USD is below the smallest {crypto.value} unit",
                {"applicationIds": "amount too small"},
            )

        request = PaymentRequest(
            id=uuid4(),
            worker_id=worker_id,
            application_ids=[str(app_id) for app_id in ids],
            amount_usd=amount_usd,
            crypto_type=crypto.value,
            crypto_rate=conversion.rate,
            crypto_amount=conversion.crypto_amount,
            status=PaymentRequestStatus.PENDING.value,
        )

        async def insert_request() -> UUID:
            async with self.datastores.relational() as session:
                session.add(request)
            return request.id

        async def delete_request(request_id: UUID) -> None:
            async with self.datastores.relational() as session:
                await session.execute(delete(PaymentRequest).where(PaymentRequest.id == request_id))

        async def link_applications() -> UUID:
            async with self.datastores.timeseries() as session:
                result = await session.execute(
                    update(TimeApplication)
                    .where(TimeApplication.id.in_(ids))
                    .where(TimeApplication.worker_id == worker_id)
                    .where(TimeApplication.status == ApplicationStatus.APPROVED.value)
                    .where(TimeApplication.payment_request_id.is_(None))
                    .values(
                        status=ApplicationStatus.REQUESTED.value,
                        payment_request_id=request.id,
                        updated_at=utcnow(),
                    )
                )
                if result.rowcount != len(ids):
                    raise ConflictError("Applications were requested by another payment request")
            return request.id

        async def unlink_applications(request_id: UUID) -> None:
            async with self.datastores.timeseries() as session:
                await session.execute(
                    update(TimeApplication)
                    .where(TimeApplication.payment_request_id == request_id)
                    .where(TimeApplication.status == ApplicationStatus.REQUESTED.value)
                    .values(
                        status=ApplicationStatus.APPROVED.value,
                        payment_request_id=None,
                        updated_at=utcnow(),
                    )
                )

        async def append_logs() -> None:
            async with self.datastores.timeseries() as session:
                session.add(
                    self._request_log(
                        request,
                        action="CREATED",
                        previous_status=None,
                        new_status=PaymentRequestStatus.PENDING.value,
                    )
                )
                for app in applications:
                    app.status = ApplicationStatus.REQUESTED.value
                    app.payment_request_id = request.id
                    session.add(
                        TimeApplicationLog(
                            application_id=app.id,
                            worker_id=worker_id,
                            organization_id=app.organization_id,
                            action="REQUESTED",
                            snapshot=application_snapshot(app),
                            log_metadata={"paymentRequestId": str(request.id)},
                        )
                    )

        saga = Saga("create_payment_request")
        saga.step("insert_request", insert_request, compensation=delete_request)
        saga.step("link_applications", link_applications, compensation=unlink_applications)
        saga.step("append_logs", append_logs)
        await saga.run()

        logger.info(
            "Payment request %s created for worker %s: %s USD = %s %s at %s (%s)",
            request.id,
            worker_id,
            amount_usd,
            conversion.crypto_amount,
            crypto.value,
            conversion.rate,
            conversion.source,
        )
        return PaymentRequestCreated(payment_request=request, approved_amount_usd=approved_amount_usd)

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def complete_custodial_payment(
        self, payment_request_id: UUID, organization_id: UUID, admin_id: UUID
    ) -> PaymentRequest:
        """Pay a PENDING request from the organization's custodial wallet.

        The payment is signed before the claim, and the claim stores its
        hash. A request that still carries the hash of an earlier,
        unconfirmed submission is settled from the ledger's answer for
        that transaction and is only paid again once it can no longer
        apply.

        Raises:
            NotFoundError / AuthorizationError: Unknown or foreign request.
            InvalidTransitionError: The request is not PENDING.
            ValidationError: No destination address or no usable wallet.
            PaymentError: A precondition, limit, signing or ledger check
                failed. When raised after submission the request is FAILED.
            LedgerTimeoutError: Outcome unknown; the request is PENDING again
                and remembers the transaction hash.
            ConflictError: Another caller claimed the request first, or an
                earlier submission is still unconfirmed.
        """
        request = await self._get_for_organization(payment_request_id, organization_id)
        PaymentRequestStateMachine.validate_transition(
            request.status, PaymentRequestStatus.PROCESSING.value
        )
        if request.submitted_tx_hash:
            settled = await self._settle_earlier_submission(request, organization_id, admin_id)
            if settled is not None:
                return settled

        crypto = CryptoType(request.crypto_type)
        amount = Decimal(request.crypto_amount)

        preflight = await self._preflight(request, organization_id, crypto)
        destination = preflight.address.address
        await self._check_source_balance(preflight.wallet, crypto, amount, preflight.issuer)

        # Decrypt and sign before claiming so a bad secret leaves the request PENDING.
        source_secret = decrypt_secret(preflight.wallet.wallet_secret_enc, self.config.encryption_key)

        now = utcnow()
        facts = PaymentHashFacts(
            payment_request_id=request.id,
            worker_id=request.worker_id,
            amount_usd=Decimal(request.amount_usd),
            crypto_amount=amount,
            crypto_rate=Decimal(request.crypto_rate),
            application_ids=list(request.application_ids),
            destination_address=destination,
            timestamp=iso_timestamp(now),
        )
        canonical_json = create_canonical_payment_data(facts)
        data_hash = hash_payment_data(canonical_json)

        memo = PaymentMemo(
            memo_type=self.config.ledger.memo_type,
            memo_data=json.dumps({"paymentRequestId": str(request.id), "dataHash": data_hash}),
        )
        signed = await self.gateway.prepare_transfer(
            crypto,
            source_secret,
            destination,
            amount,
            issuer_config=preflight.issuer,
            memos=[memo],
        )

        await self._transition(
            request,
            PaymentRequestStatus.PENDING,
            PaymentRequestStatus.PROCESSING,
            action="PROCESSING",
            admin_id=admin_id,
            crypto_address=destination,
            data_hash=data_hash,
            canonical_data_json=canonical_json,
            processed_at=now,
            submitted_tx_hash=signed.tx_hash,
            submitted_last_ledger=signed.last_ledger_sequence,
        )
        logger.info(
            "Payment request %s claimed for processing (hash %s, transaction %s)",
            request.id,
            data_hash,
            signed.tx_hash,
        )

        try:
            transfer = await self.gateway.submit(signed)
        except LedgerTimeoutError as e:
            await self._transition(
                request,
                PaymentRequestStatus.PROCESSING,
                PaymentRequestStatus.PENDING,
                action="REVERTED",
                admin_id=admin_id,
                crypto_address=destination,
                error_message=f"{e.message} (transaction {e.tx_hash})",
            )
            logger.warning(
                "Payment request %s reverted to PENDING after ledger timeout; "
                "transaction %s may still validate",
                request.id,
                e.tx_hash,
            )
            raise
        except PaymentError as e:
            await self.mark_payment_failed(
                request.id,
                e.message,
                e.ledger_error_code or e.code,
                admin_id=admin_id,
                crypto_address=destination,
            )
            raise

        completed_at = utcnow()
        try:
            request = await self._transition(
                request,
                PaymentRequestStatus.PROCESSING,
                PaymentRequestStatus.COMPLETED,
                action=None,
                transaction_hash=transfer.tx_hash,
                approved_by=admin_id,
                approved_at=completed_at,
                processed_at=completed_at,
            )
        except ConflictError:
            logger.error(
                "Payment request %s settled on ledger as %s but its status changed meanwhile",
                payment_request_id,
                transfer.tx_hash,
            )
            raise

        await self._finalize(
            request,
            organization_id,
            admin_id=admin_id,
            crypto_address=destination,
            transfer=transfer,
            previous_status=PaymentRequestStatus.PROCESSING.value,
        )
        logger.info(
            "Payment request %s completed: %s %s to %s in %s",
            request.id,
            amount,
            crypto.value,
            destination,
            transfer.tx_hash,
        )
        return request

    async def _settle_earlier_submission(
        self, request: PaymentRequest, organization_id: UUID, admin_id: UUID
    ) -> PaymentRequest | None:
        """Resolve a transaction left unconfirmed by a ledger timeout.

        Returns the COMPLETED request when that transaction validated, and
        None when it can no longer apply so a new payment may be signed.
        Raises ConflictError while its outcome is still open.
        """
        tx_hash = request.submitted_tx_hash
        status = await self.gateway.get_transaction_status(tx_hash, request.submitted_last_ledger)
        if status == "pending":
            raise ConflictError(
                f"Payment request {request.id} has unconfirmed ledger transaction {tx_hash}; "
                "retry once it is final"
            )
        if status != "validated":
            logger.info(
                "Earlier transaction %s of payment request %s did not apply; signing a new payment",
                tx_hash,
                request.id,
            )
            return None

        destination = json.loads(request.canonical_data_json or "{}").get("destinationAddress")
        now = utcnow()
        request = await self._transition(
            request,
            PaymentRequestStatus.PENDING,
            PaymentRequestStatus.COMPLETED,
            action=None,
            transaction_hash=tx_hash,
            approved_by=admin_id,
            approved_at=now,
            processed_at=now,
        )
        await self._finalize(
            request,
            organization_id,
            admin_id=admin_id,
            crypto_address=destination,
            previous_status=PaymentRequestStatus.PENDING.value,
        )
        logger.info(
            "Payment request %s completed by transaction %s validated after a timeout",
            request.id,
            tx_hash,
        )
        return request

    async def complete_external_payment(
        self,
        payment_request_id: UUID,
        transaction_hash: str,
        organization_id: UUID,
        admin_id: UUID,
    ) -> PaymentRequest:
        """Record a PENDING request as paid by an externally signed transaction.

        Raises:
            ValidationError: Empty transaction hash or no destination address.
            InvalidTransitionError: The request is not PENDING.
            ConflictError: Another caller changed the request first, or a
                transaction the service submitted may still settle it.
        """
        transaction_hash = (transaction_hash or "").strip()
        if not transaction_hash:
            raise ValidationError("Transaction hash is required", {"transactionHash": "empty"})

        request = await self._get_for_organization(payment_request_id, organization_id)
        if request.status != PaymentRequestStatus.PENDING.value:
            raise InvalidTransitionError(
                request.status,
                PaymentRequestStatus.COMPLETED.value,
                "externally signed payments complete PENDING requests only",
            )
        submitted = request.submitted_tx_hash
        if submitted and submitted != transaction_hash:
            status = await self.gateway.get_transaction_status(
                submitted, request.submitted_last_ledger
            )
            if status != "failed":
                raise ConflictError(
                    f"Payment request {request.id} has ledger transaction {submitted} "
                    f"({status}); execute the request again to settle it"
                )
        address = await self._default_address(request.worker_id)

        now = utcnow()
        request = await self._transition(
            request,
            PaymentRequestStatus.PENDING,
            PaymentRequestStatus.COMPLETED,
            action=None,
            transaction_hash=transaction_hash,
            approved_by=admin_id,
            approved_at=now,
            processed_at=now,
        )
        await self._finalize(
            request,
            organization_id,
            admin_id=admin_id,
            crypto_address=address.address,
            previous_status=PaymentRequestStatus.PENDING.value,
        )
        logger.info("Payment request %s completed externally in %s", request.id, transaction_hash)
        return request

    async def mark_payment_failed(
        self,
        payment_request_id: UUID,
        reason: str,
        code: str | None = None,
        admin_id: UUID | None = None,
        crypto_address: str | None = None,
        organization_id: UUID | None = None,
    ) -> PaymentRequest:
        """Move a PENDING or PROCESSING request to FAILED.

        Linked applications stay REQUESTED. When ``organization_id`` is given
        the request must belong to it.

        Raises:
            NotFoundError: Unknown request.
            AuthorizationError: The request belongs to another organization.
            InvalidTransitionError: The request is already terminal.
            ConflictError: The status changed concurrently.
        """
        if organization_id is not None:
            request = await self._get_for_organization(payment_request_id, organization_id)
        else:
            async with self.datastores.relational() as session:
                request = await session.get(PaymentRequest, payment_request_id)
            if request is None:
                raise NotFoundError("Payment request")
        PaymentRequestStateMachine.validate_transition(
            request.status, PaymentRequestStatus.FAILED.value
        )

        request = await self._transition(
            request,
            PaymentRequestStatus(request.status),
            PaymentRequestStatus.FAILED,
            action="FAILED",
            admin_id=admin_id,
            crypto_address=crypto_address,
            error_message=reason,
            failure_reason=reason,
            failure_code=code,
            processed_at=utcnow(),
        )
        logger.info("Payment request %s failed (%s): %s", payment_request_id, code, reason)
        return request

    async def reconcile_completed_payment(
        self, payment_request_id: UUID, organization_id: UUID | None = None
    ) -> FinalizeResult:
        """Write any missing completion records for a COMPLETED request."""
        async with self.datastores.relational() as session:
            request = await session.get(PaymentRequest, payment_request_id)
            worker = await session.get(Worker, request.worker_id) if request is not None else None
        if request is None or worker is None:
            raise NotFoundError("Payment request")
        if organization_id is not None and worker.organization_id != organization_id:
            raise AuthorizationError("Payment request belongs to another organization")
        if request.status != PaymentRequestStatus.COMPLETED.value:
            raise ConflictError(
                f"Payment request {payment_request_id} is {request.status}, not COMPLETED"
            )
        result = await self._finalize(request, worker.organization_id, admin_id=request.approved_by)
        if result.changed:
            logger.info("Reconciled payment request %s: %s", payment_request_id, result)
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_worker_payment_requests(self, worker_id: UUID) -> list[PaymentRequest]:
        async with self.datastores.relational() as session:
            result = await session.execute(
                select(PaymentRequest)
                .where(PaymentRequest.worker_id == worker_id)
                .order_by(PaymentRequest.created_at.desc())
            )
            return list(result.scalars().all())

    async def get_organization_payment_requests(
        self, organization_id: UUID, status: PaymentRequestStatus | str | None = None
    ) -> list[PaymentRequest]:
        query = (
            select(PaymentRequest)
            .join(Worker, Worker.id == PaymentRequest.worker_id)
            .where(Worker.organization_id == organization_id)
        )
        if status is not None:
            query = query.where(PaymentRequest.status == PaymentRequestStatus(status).value)
        async with self.datastores.relational() as session:
            result = await session.execute(query.order_by(PaymentRequest.created_at.desc()))
            return list(result.scalars().all())

    async def get_approved_applications(self, worker_id: UUID) -> list[TimeApplication]:
        """Applications the worker can still bundle into a payment request."""
        async with self.datastores.timeseries() as session:
            result = await session.execute(
                select(TimeApplication)
                .where(TimeApplication.worker_id == worker_id)
                .where(TimeApplication.status == ApplicationStatus.APPROVED.value)
                .where(TimeApplication.payment_request_id.is_(None))
                .order_by(TimeApplication.start_date.asc())
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _get_for_organization(
        self, payment_request_id: UUID, organization_id: UUID
    ) -> PaymentRequest:
        async with self.datastores.relational() as session:
            request = await session.get(PaymentRequest, payment_request_id)
            worker = await session.get(Worker, request.worker_id) if request is not None else None
        if request is None or worker is None:
            raise NotFoundError("Payment request")
        if worker.organization_id != organization_id:
            raise AuthorizationError("Payment request belongs to another organization")
        return request

    async def _default_address(self, worker_id: UUID) -> CryptoAddress:
        async with self.datastores.relational() as session:
            address = (
                await session.execute(
                    select(CryptoAddress)
                    .where(CryptoAddress.worker_id == worker_id)
                    .where(CryptoAddress.is_default.is_(True))
                    .where(CryptoAddress.is_active.is_(True))
                )
            ).scalars().first()
        if address is None:
            raise ValidationError(
                "Worker has no active default payout address", {"cryptoAddress": "missing"}
            )
        return address

    async def _preflight(
        self, request: PaymentRequest, organization_id: UUID, crypto: CryptoType
    ) -> _Preflight:
        address = await self._default_address(request.worker_id)

        issuer = await self.issuers.require(crypto) if crypto != CryptoType.XRP else None

        async with self.datastores.relational() as session:
            wallet = (
                await session.execute(
                    select(OrganizationWallet)
                    .where(OrganizationWallet.organization_id == organization_id)
                    .where(OrganizationWallet.is_default.is_(True))
                    .where(OrganizationWallet.is_active.is_(True))
                )
            ).scalars().first()
        if wallet is None:
            raise ValidationError(
                "Organization has no active default wallet", {"wallet": "missing"}
            )
        if wallet.requires_manual_signing or not wallet.wallet_secret_enc:
            raise ValidationError(
                "Organization wallet requires manual signing; use an externally signed payment",
                {"wallet": "manual signing"},
            )

        await self.limits.validate(organization_id, Decimal(request.amount_usd), address)

        await self.gateway.validate_destination(address.address)
        if issuer is not None:
            await self.gateway.trustlines.ensure_trustline(
                address.address,
                issuer.issuer_address,
                issuer.currency_code,
                required_amount=Decimal(request.crypto_amount),
            )

        return _Preflight(address=address, wallet=wallet, issuer=issuer)

    async def _check_source_balance(
        self,
        wallet: OrganizationWallet,
        crypto: CryptoType,
        amount: Decimal,
        issuer: IssuerConfig | None,
    ) -> None:
        ledger_config = self.config.ledger
        balances = await self.gateway.get_wallet_balances(wallet.wallet_address, issuer)
        available_xrp = balances.xrp - ledger_config.xrp_reserve

        if crypto == CryptoType.XRP:
            if available_xrp < amount:
                raise InsufficientBalanceError(amount, max(available_xrp, Decimal("0")))
            return

        if balances.token < amount:
            raise InsufficientBalanceError(amount, balances.token, crypto.value)
        if available_xrp < ledger_config.token_fee_headroom_xrp:
            raise InsufficientBalanceError(
                ledger_config.token_fee_headroom_xrp, max(available_xrp, Decimal("0"))
            )

    async def _transition(
        self,
        request: PaymentRequest,
        expected: PaymentRequestStatus,
        target: PaymentRequestStatus,
        action: str | None,
        admin_id: UUID | None = None,
        crypto_address: str | None = None,
        error_message: str | None = None,
        **values,
    ) -> PaymentRequest:
        """Guarded status update; appends a log row when ``action`` is set.

        The log goes to the other store after the status commit.
        """
        PaymentRequestStateMachine.validate_transition(expected.value, target.value)
        async with self.datastores.relational() as session:
            result = await session.execute(
                update(PaymentRequest)
                .where(PaymentRequest.id == request.id)
                .where(PaymentRequest.status == expected.value)
                .values(status=target.value, updated_at=utcnow(), **values)
            )
            if result.rowcount != 1:
                raise ConflictError(
                    f"Payment request {request.id} is no longer {expected.value}"
                )
            updated = (
                await session.execute(
                    select(PaymentRequest)
                    .where(PaymentRequest.id == request.id)
                    .execution_options(populate_existing=True)
                )
            ).scalar_one()

        if action is not None:
            async with self.datastores.timeseries() as session:
                session.add(
                    self._request_log(
                        updated,
                        action=action,
                        previous_status=expected.value,
                        new_status=target.value,
                        admin_id=admin_id,
                        crypto_address=crypto_address,
                        error_message=error_message,
                    )
                )
        return updated

    async def _finalize(
        self,
        request: PaymentRequest,
        organization_id: UUID,
        admin_id: UUID | None = None,
        crypto_address: str | None = None,
        transfer: TransferResult | None = None,
        previous_status: str | None = None,
    ) -> FinalizeResult:
        """Bring the time-series store in line with a COMPLETED request."""
        async with self.datastores.timeseries() as session:
            requested = list(
                (
                    await session.execute(
                        select(TimeApplication)
                        .where(TimeApplication.payment_request_id == request.id)
                        .where(TimeApplication.status == ApplicationStatus.REQUESTED.value)
                    )
                ).scalars()
            )
            paid = 0
            if requested:
                result = await session.execute(
                    update(TimeApplication)
                    .where(TimeApplication.id.in_([app.id for app in requested]))
                    .where(TimeApplication.status == ApplicationStatus.REQUESTED.value)
                    .values(status=ApplicationStatus.PAID.value, updated_at=utcnow())
                )
                if result.rowcount != len(requested):
                    raise ConflictError(f"Applications of {request.id} changed during finalization")
                paid = len(requested)

                timestamp_ids = [ts_id for app in requested for ts_id in timestamp_uuids(app)]
                await session.execute(
                    update(WorkTimestamp)
                    .where(WorkTimestamp.id.in_(timestamp_ids))
                    .where(WorkTimestamp.application_status != ApplicationLinkStatus.PAID.value)
                    .values(application_status=ApplicationLinkStatus.PAID.value)
                )
                for app in requested:
                    app.status = ApplicationStatus.PAID.value
                    session.add(
                        TimeApplicationLog(
                            application_id=app.id,
                            worker_id=app.worker_id,
                            organization_id=app.organization_id,
                            action="PAID",
                            snapshot=application_snapshot(app),
                            log_metadata={
                                "paymentRequestId": str(request.id),
                                "transactionHash": request.transaction_hash,
                            },
                        )
                    )

            transaction_recorded = False
            existing_transaction = (
                await session.execute(
                    select(PaymentTransaction.id).where(
                        PaymentTransaction.payment_request_id == request.id
                    )
                )
            ).scalar_one_or_none()
            if existing_transaction is None:
                session.add(
                    PaymentTransaction(
                        payment_request_id=request.id,
                        organization_id=organization_id,
                        worker_id=request.worker_id,
                        amount_usd=request.amount_usd,
                        crypto_amount=request.crypto_amount,
                        crypto_type=request.crypto_type,
                        exchange_rate=request.crypto_rate,
                        transaction_hash=request.transaction_hash,
                        ledger_index=transfer.ledger_index if transfer else None,
                        fee=transfer.fee if transfer else None,
                        delivered_amount=transfer.delivered_amount if transfer else None,
                    )
                )
                transaction_recorded = True

            completion_logged = False
            existing_log = (
                await session.execute(
                    select(PaymentRequestLog.id)
                    .where(PaymentRequestLog.payment_request_id == request.id)
                    .where(PaymentRequestLog.action == "COMPLETED")
                )
            ).scalars().first()
            if existing_log is None:
                session.add(
                    self._request_log(
                        request,
                        action="COMPLETED",
                        previous_status=previous_status,
                        new_status=PaymentRequestStatus.COMPLETED.value,
                        admin_id=admin_id,
                        crypto_address=crypto_address,
                    )
                )
                completion_logged = True

            hash_logged = False
            if request.data_hash and request.canonical_data_json:
                existing_hash = (
                    await session.execute(
                        select(PaymentHashLog.id)
                        .where(PaymentHashLog.payment_request_id == request.id)
                        .where(PaymentHashLog.data_hash == request.data_hash)
                    )
                ).scalar_one_or_none()
                if existing_hash is None:
                    session.add(
                        PaymentHashLog(
                            payment_request_id=request.id,
                            data_hash=request.data_hash,
                            canonical_data_json=request.canonical_data_json,
                            transaction_hash=request.transaction_hash,
                        )
                    )
                    hash_logged = True

        return FinalizeResult(
            applications_paid=paid,
            transaction_recorded=transaction_recorded,
            completion_logged=completion_logged,
            hash_logged=hash_logged,
        )

    @staticmethod
    def _request_log(
        request: PaymentRequest,
        action: str,
        previous_status: str | None,
        new_status: str,
        admin_id: UUID | None = None,
        crypto_address: str | None = None,
        error_message: str | None = None,
    ) -> PaymentRequestLog:
        return PaymentRequestLog(
            payment_request_id=request.id,
            worker_id=request.worker_id,
            action=action,
            previous_status=previous_status,
            new_status=new_status,
            amount_usd=request.amount_usd,
            crypto_amount=request.crypto_amount,
            crypto_rate=request.crypto_rate,
            crypto_type=request.crypto_type,
            crypto_address=crypto_address,
            admin_id=admin_id,
            transaction_hash=request.transaction_hash,
            error_message=error_message,
        )
