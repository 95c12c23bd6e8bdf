"""Transfer challenge construction.

The smart account contract recomputes the same digest from the arguments of
``transfer_usdc`` and the nonce it holds, then checks that the WebAuthn
``clientDataJSON.challenge`` equals it. Any byte of drift here means every
transfer is rejected, so the layout is fixed:

    utf8(operation) || amount (16 bytes LE) || nonce (8 bytes LE)
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

from vaulton.codecs import AMOUNT_BYTES, NONCE_BYTES, amount_to_bytes, encode_nonce
from vaulton.utils import b64url_encode

TRANSFER_OPERATION = "transfer_usdc"


@dataclass(frozen=True)
class Challenge:
    """Digest the authenticator signs, plus what it was derived from."""

    operation: str
    payload_bytes: bytes
    digest: bytes
    wire_encoding: str

    @property
    def digest_hex(self) -> str:
        return self.digest.hex()


def build_challenge(operation: str, amount_bytes: bytes, nonce_bytes: bytes) -> Challenge:
    """
    Hash ``operation || amount_bytes || nonce_bytes`` with SHA-256.

    Args:
        operation: Contract function name the signature authorizes
        amount_bytes: 16-byte little-endian amount
        nonce_bytes: 8-byte little-endian nonce

    Returns:
        Challenge whose ``wire_encoding`` is the unpadded base64url digest
    """
    if not operation:
        raise ValueError("operation tag is required")
    if len(amount_bytes) != AMOUNT_BYTES:
        raise ValueError(f"amount must be {AMOUNT_BYTES} bytes (got {len(amount_bytes)})")
    if len(nonce_bytes) != NONCE_BYTES:
        raise ValueError(f"nonce must be {NONCE_BYTES} bytes (got {len(nonce_bytes)})")

    payload = operation.encode("utf-8") + bytes(amount_bytes) + bytes(nonce_bytes)
    digest = hashlib.sha256(payload).digest()
    return Challenge(
        operation=operation,
        payload_bytes=payload,
        digest=digest,
        wire_encoding=b64url_encode(digest),
    )


def build_transfer_challenge(amount_minor_units: int, nonce: int, operation: str = TRANSFER_OPERATION) -> Challenge:
    """Build the challenge for a transfer of ``amount_minor_units`` at ``nonce``."""
    return build_challenge(operation, amount_to_bytes(amount_minor_units), encode_nonce(nonce))
