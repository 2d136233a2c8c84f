"""Encryption of custodial wallet secrets.

AES-256-CBC with PKCS7 padding. The stored envelope is ``ivHex:cipherHex``
and the key is 32 bytes supplied base64-encoded (``openssl rand -base64 32``).
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from payroll_settlement.errors import EncryptionError

KEY_LENGTH = 32
IV_LENGTH = 16


def load_key(encoded_key: str | None) -> bytes:
    """Decode and check a base64 encryption key."""
    if not encoded_key:
        raise EncryptionError("ENCRYPTION_KEY is not set")
    try:
        key = base64.b64decode(encoded_key, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncryptionError("ENCRYPTION_KEY is not valid base64") from e
    if len(key) != KEY_LENGTH:
        raise EncryptionError(
            f"ENCRYPTION_KEY must be {KEY_LENGTH} bytes (use: openssl rand -base64 32)"
        )
    return key


def encrypt_secret(plaintext: str, encoded_key: str | None) -> str:
    """Encrypt a secret into the ``ivHex:cipherHex`` envelope."""
    key = load_key(encoded_key)
    iv = os.urandom(IV_LENGTH)

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    encrypted = encryptor.update(padded) + encryptor.finalize()

    return f"{iv.hex()}:{encrypted.hex()}"


def decrypt_secret(ciphertext: str, encoded_key: str | None) -> str:
    """Decrypt an ``ivHex:cipherHex`` envelope."""
    key = load_key(encoded_key)
    parts = ciphertext.split(":")
    if len(parts) != 2:
        raise EncryptionError("Invalid ciphertext format")

    try:
        iv = bytes.fromhex(parts[0])
        encrypted = bytes.fromhex(parts[1])
    except ValueError as e:
        raise EncryptionError("Invalid ciphertext format") from e
    if len(iv) != IV_LENGTH:
        raise EncryptionError("Invalid ciphertext format")

    try:
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(encrypted) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")
    except ValueError as e:
        raise EncryptionError("Secret could not be decrypted") from e
