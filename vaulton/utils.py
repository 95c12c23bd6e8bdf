"""
Utility functions for the Vaulton SDK

Shared helpers for address validation and the base64url encodings used by
WebAuthn payloads.
"""

import base64
import re
from typing import Any

# Stellar account (G...) or contract (C...) strkey
WALLET_ADDRESS_RE = re.compile(r"^[GC][A-Z2-7]{20,}$")


def is_wallet_address(value: Any) -> bool:
    """
    Validate a ledger address.

    Args:
        value: Candidate address

    Returns:
        True if value looks like a G... or C... strkey
    """
    text = str(value or "").strip()
    if not text:
        return False
    return WALLET_ADDRESS_RE.fullmatch(text) is not None


def b64url_encode(data: bytes) -> str:
    """Encode bytes as unpadded URL-safe base64."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(value: Any) -> bytes:
    """Decode URL-safe base64 with or without padding.

    Standard alphabet input (``+`` and ``/``) is accepted as well since some
    authenticator bridges emit it.
    """
    text = str(value or "").strip().replace("+", "-").replace("/", "_")
    padded = text + "=" * ((4 - len(text) % 4) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def normalize_base_url(value: Any, default: str = "") -> str:
    """Strip whitespace and trailing slashes from a base URL."""
    raw = str(value or default).strip()
    return raw.rstrip("/")
