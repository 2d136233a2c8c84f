"""Settlement primitives: hashing, rates, trustlines, ledger gateway."""

from payroll_settlement.settlement.config import (
    LedgerSubmitConfig,
    RateFeedConfig,
    SettlementConfig,
)
from payroll_settlement.settlement.exchange_rate import (
    RATE_UNAVAILABLE,
    Conversion,
    ExchangeRateResolver,
)
from payroll_settlement.settlement.gateway import (
    PaymentTransactionGateway,
    TransferResult,
    WalletBalances,
)
from payroll_settlement.settlement.hashing import (
    PaymentHashFacts,
    assert_payment_hash,
    create_canonical_payment_data,
    hash_payment_data,
    verify_payment_hash,
)
from payroll_settlement.settlement.issuer_config import IssuerConfig, IssuerConfigResolver
from payroll_settlement.settlement.trustline import (
    TrustlineStatus,
    TrustlineValidator,
    requires_trustline_validation,
)

__all__ = [
    "LedgerSubmitConfig",
    "RateFeedConfig",
    "SettlementConfig",
    "RATE_UNAVAILABLE",
    "Conversion",
    "ExchangeRateResolver",
    "PaymentTransactionGateway",
    "TransferResult",
    "WalletBalances",
    "PaymentHashFacts",
    "assert_payment_hash",
    "create_canonical_payment_data",
    "hash_payment_data",
    "verify_payment_hash",
    "IssuerConfig",
    "IssuerConfigResolver",
    "TrustlineStatus",
    "TrustlineValidator",
    "requires_trustline_validation",
]
