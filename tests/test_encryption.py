"""Tests for custodial wallet secret encryption."""

import base64
import re

import pytest

from payroll_settlement.errors import EncryptionError
from payroll_settlement.settlement.encryption import decrypt_secret, encrypt_secret, load_key

KEY = base64.b64encode(b"k" * 32).decode()
ENVELOPE = re.compile(r"^[0-9a-f]{32}:[0-9a-f]+$")


def test_round_trip_and_envelope_shape():
    ciphertext = encrypt_secret("sEdSecretSeedValue", KEY)
    assert ENVELOPE.match(ciphertext)
    assert len(ciphertext.split(":")[1]) % 32 == 0
    assert decrypt_secret(ciphertext, KEY) == "sEdSecretSeedValue"


def test_fresh_iv_per_encryption():
    assert encrypt_secret("same", KEY) != encrypt_secret("same", KEY)


def test_wrong_key_does_not_reveal_secret():
    ciphertext = encrypt_secret("sEdSecretSeedValue", KEY)
    other_key = base64.b64encode(b"x" * 32).decode()
    try:
        plaintext = decrypt_secret(ciphertext, other_key)
    except EncryptionError:
        return
    assert plaintext != "sEdSecretSeedValue"


@pytest.mark.parametrize(
    "ciphertext",
    ["no-separator", "a:b:c", "zz:00", "00:" + "00" * 16],
)
def test_malformed_envelope(ciphertext):
    with pytest.raises(EncryptionError):
        decrypt_secret(ciphertext, KEY)


@pytest.mark.parametrize(
    "key",
    [None, "", "not base64!", base64.b64encode(b"short").decode()],
)
def test_key_must_be_32_base64_bytes(key):
    with pytest.raises(EncryptionError):
        load_key(key)
