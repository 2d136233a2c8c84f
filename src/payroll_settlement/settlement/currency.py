"""Ledger currency codes.

The ledger accepts three-character codes as-is; longer codes travel as a
40-character hex string (ASCII bytes, zero padded to 20 bytes).
"""

from __future__ import annotations

import re

_HEX_CODE = re.compile(r"^[0-9A-Fa-f]{40}$")


def normalize_currency_code(code: str) -> str:
    """Return the human-readable, uppercase form of a currency code."""
    if len(code) <= 3:
        return code.upper()
    if _HEX_CODE.match(code):
        chars = []
        for i in range(0, len(code), 2):
            byte = int(code[i : i + 2], 16)
            if byte == 0:
                break
            chars.append(chr(byte))
        return "".join(chars).upper()
    return code.upper()


def encode_currency_code(code: str) -> str:
    """Return the form of a currency code accepted in ledger amounts."""
    if len(code) <= 3 or _HEX_CODE.match(code):
        return code
    return code.encode("ascii").hex().upper().ljust(40, "0")
