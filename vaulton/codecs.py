"""Amount and nonce codecs.

Both produce the fixed-width little-endian encodings the smart account contract
hashes when it recomputes a transfer challenge:

* amounts: 16 bytes (i128 on the ledger, always positive here)
* nonces: 8 bytes (u64)
"""

from __future__ import annotations

import re
from typing import Any

from vaulton.errors import AmountOverflow, InvalidAmount, NonceUnavailable

# 1 USDC = 10,000,000 stroops
STROOPS_PER_UNIT = 10_000_000
AMOUNT_DECIMALS = 7
AMOUNT_BYTES = 16
NONCE_BYTES = 8

MAX_AMOUNT = (1 << (AMOUNT_BYTES * 8)) - 1
MAX_NONCE = (1 << (NONCE_BYTES * 8)) - 1

_AMOUNT_RE = re.compile(r"^[0-9]*(?:\.[0-9]{0,7})?$")


def to_minor_units(amount: Any) -> int:
    """
    Convert a decimal amount string into integer minor units.

    Args:
        amount: Decimal text such as ``"2.50"`` or ``".5"`` (max 7 decimals)

    Returns:
        Amount in minor units (stroops)

    Raises:
        InvalidAmount: empty, non-numeric, more than 7 decimals, or zero
        AmountOverflow: result does not fit in 128 bits
    """
    raw = str(amount if amount is not None else "").strip()
    if not raw:
        raise InvalidAmount("amount is required")

    normalized = f"0{raw}" if raw.startswith(".") else raw
    if normalized == "." or not _AMOUNT_RE.fullmatch(normalized):
        raise InvalidAmount(f"amount must be a decimal with at most {AMOUNT_DECIMALS} fractional digits (got {raw!r})")

    whole_raw, _, frac_raw = normalized.partition(".")
    whole = int(whole_raw or "0")
    fraction = int((frac_raw + "0" * AMOUNT_DECIMALS)[:AMOUNT_DECIMALS])
    minor = whole * STROOPS_PER_UNIT + fraction

    if minor <= 0:
        raise InvalidAmount("amount must be greater than 0")
    if minor > MAX_AMOUNT:
        raise AmountOverflow(f"amount {raw} exceeds the 128-bit range")
    return minor


def amount_to_bytes(minor_units: int) -> bytes:
    """Encode minor units as 16 little-endian bytes."""
    if minor_units < 0:
        raise InvalidAmount("amount must not be negative")
    if minor_units > MAX_AMOUNT:
        raise AmountOverflow(f"amount {minor_units} exceeds the 128-bit range")
    return minor_units.to_bytes(AMOUNT_BYTES, "little")


def encode_amount(amount: Any) -> bytes:
    """Parse decimal amount text and return its 16-byte little-endian encoding."""
    return amount_to_bytes(to_minor_units(amount))


def format_minor_units(minor_units: int) -> str:
    """Render minor units as a fixed 7-decimal string, e.g. ``12500000 -> "1.2500000"``."""
    sign = "-" if minor_units < 0 else ""
    whole, fraction = divmod(abs(int(minor_units)), STROOPS_PER_UNIT)
    return f"{sign}{whole}.{fraction:0{AMOUNT_DECIMALS}d}"


def encode_nonce(nonce: int) -> bytes:
    """Encode a u64 nonce as 8 little-endian bytes."""
    if not isinstance(nonce, int) or isinstance(nonce, bool):
        raise ValueError(f"nonce must be an integer (got {type(nonce).__name__})")
    if nonce < 0 or nonce > MAX_NONCE:
        raise ValueError(f"nonce {nonce} is outside the u64 range")
    return nonce.to_bytes(NONCE_BYTES, "little")


def parse_nonce(value: Any) -> int:
    """
    Convert a nonce reported by the backend into an int.

    The backend reports u64 values as decimal strings so they survive JSON.

    Raises:
        NonceUnavailable: value is missing, not an integer, or outside u64
    """
    if value is None or isinstance(value, bool):
        raise NonceUnavailable("backend returned no nonce")
    text = str(value).strip()
    if not re.fullmatch(r"[0-9]+", text):
        raise NonceUnavailable(f"backend returned an unusable nonce: {value!r}")
    nonce = int(text)
    if nonce > MAX_NONCE:
        raise NonceUnavailable(f"nonce {nonce} is outside the u64 range")
    return nonce
