"""Canonical payment data and its audit digest.

The canonical JSON of a payment is embedded (as its SHA-256 digest) in the
ledger transaction memo and stored in the hash log, so anyone holding the
stored JSON can later prove what was paid. The serialization rules are a
persisted format:

    - keys sorted lexicographically at every level
    - list values sorted
    - compact separators, non-ASCII characters kept as-is
    - numbers printed as JavaScript prints them: integral values without a
      fractional part, plain decimals between 1e-6 and 1e21, exponents
      such as 1e-7 outside that range
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Sequence
from uuid import UUID

from payroll_settlement.errors import HashMismatchError


@dataclass(frozen=True)
class PaymentHashFacts:
    """Facts of a payment that go into its canonical form."""

    payment_request_id: UUID | str
    worker_id: UUID | str
    amount_usd: Decimal
    crypto_amount: Decimal
    crypto_rate: Decimal
    application_ids: Sequence[UUID | str]
    destination_address: str
    timestamp: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "paymentRequestId": str(self.payment_request_id),
            "workerId": str(self.worker_id),
            "amountUsd": self.amount_usd,
            "cryptoAmount": self.crypto_amount,
            "cryptoRate": self.crypto_rate,
            "applicationIds": [str(app_id) for app_id in self.application_ids],
            "destinationAddress": self.destination_address,
            "timestamp": self.timestamp,
        }


def _js_number(value: Decimal | int | float) -> str:
    """Render a number the way JavaScript's ``Number#toString`` does.

    Plain decimal notation for magnitudes from 1e-6 up to 1e21, and
    ``1e-7`` / ``1.5e+21`` style exponents outside that range.
    """
    value = Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
    if not value.is_finite():
        raise ValueError(f"{value} is not a JSON number")

    sign, digit_tuple, exponent = value.as_tuple()
    digits = "".join(str(digit) for digit in digit_tuple).lstrip("0")
    if not digits:
        return "0"
    significant = digits.rstrip("0")
    exponent += len(digits) - len(significant)
    digits = significant

    k = len(digits)
    n = k + exponent
    if k <= n <= 21:
        text = digits + "0" * (n - k)
    elif 0 < n <= 21:
        text = f"{digits[:n]}.{digits[n:]}"
    elif -6 < n <= 0:
        text = "0." + "0" * -n + digits
    else:
        mantissa = digits if k == 1 else f"{digits[0]}.{digits[1:]}"
        text = f"{mantissa}e{'+' if n > 0 else '-'}{abs(n - 1)}"
    return f"-{text}" if sign else text


def _canonicalize(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _canonicalize(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return sorted(_canonicalize(item) for item in value)
    return value


def _dump(value: Any) -> str:
    if isinstance(value, dict):
        members = (
            f"{json.dumps(key, ensure_ascii=False)}:{_dump(item)}" for key, item in value.items()
        )
        return "{" + ",".join(members) + "}"
    if isinstance(value, list):
        return "[" + ",".join(_dump(item) for item in value) + "]"
    if isinstance(value, bool) or value is None or isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (int, float, Decimal)):
        return _js_number(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def create_canonical_payment_data(facts: PaymentHashFacts | dict[str, Any]) -> str:
    """Serialize payment facts to their canonical JSON string."""
    payload = facts.to_payload() if isinstance(facts, PaymentHashFacts) else facts
    return _dump(_canonicalize(payload))


def hash_payment_data(canonical_json: str) -> str:
    """Lowercase SHA-256 hex digest of the UTF-8 canonical JSON."""
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()


def verify_payment_hash(canonical_json: str, expected_hash: str) -> bool:
    """Recompute the digest and compare in constant time.

    A malformed expected digest (wrong length or not hex) never matches.
    """
    if not isinstance(expected_hash, str) or len(expected_hash) != 64:
        return False
    try:
        expected = bytes.fromhex(expected_hash)
    except ValueError:
        return False
    computed = hashlib.sha256(canonical_json.encode("utf-8")).digest()
    return hmac.compare_digest(computed, expected)


def assert_payment_hash(canonical_json: str, expected_hash: str) -> None:
    """Raise HashMismatchError when the stored data no longer matches."""
    if not verify_payment_hash(canonical_json, expected_hash):
        raise HashMismatchError(expected_hash)
