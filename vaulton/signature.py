"""
Passkey signature normalization for ledger verification.

Platform authenticators return ECDSA P-256 signatures DER encoded:

    0x30 len 0x02 rLen r 0x02 sLen s

The smart account's secp256r1 verifier only takes the raw 64-byte ``r || s``
form, and only the low-S member of the ``(r, s)`` / ``(r, n - s)`` pair.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from vaulton.errors import MalformedSignature

logger = logging.getLogger(__name__)

# Group order of NIST P-256 (secp256r1)
P256_ORDER = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551
P256_HALF_ORDER = P256_ORDER // 2

COMPONENT_BYTES = 32
RAW_SIGNATURE_BYTES = 2 * COMPONENT_BYTES

_SEQUENCE_TAG = 0x30
_INTEGER_TAG = 0x02


@dataclass(frozen=True)
class NormalizedSignature:
    """Raw low-S signature ready for submission."""

    r: bytes
    s: bytes
    low_s_applied: bool = False

    @property
    def raw(self) -> bytes:
        return self.r + self.s

    @property
    def hex(self) -> str:
        return self.raw.hex()

    @property
    def s_value(self) -> int:
        return int.from_bytes(self.s, "big")


def _read_integer(der: bytes, offset: int) -> tuple:
    if offset + 2 > len(der):
        raise MalformedSignature("signature truncated before integer header")
    if der[offset] != _INTEGER_TAG:
        raise MalformedSignature(f"expected INTEGER tag at offset {offset}, found 0x{der[offset]:02x}")

    length = der[offset + 1]
    start = offset + 2
    end = start + length
    if length == 0 or end > len(der):
        raise MalformedSignature(f"integer at offset {offset} declares {length} bytes, {len(der) - start} available")
    return der[start:end], end


def _fit_component(value: bytes) -> bytes:
    # DER prepends 0x00 when the high bit is set
    if value[0] == 0 and len(value) > COMPONENT_BYTES:
        value = value[1:]
    if len(value) < COMPONENT_BYTES:
        value = b"\x00" * (COMPONENT_BYTES - len(value)) + value
    return value[-COMPONENT_BYTES:]


def normalize_signature(der: Union[bytes, bytearray]) -> NormalizedSignature:
    """
    Convert a DER ECDSA signature into a raw low-S ``r || s`` pair.

    Args:
        der: DER-encoded signature from the authenticator assertion

    Returns:
        NormalizedSignature with 32-byte ``r`` and canonical 32-byte ``s``

    Raises:
        MalformedSignature: tags, lengths or data are structurally invalid
    """
    der = bytes(der or b"")
    if len(der) < 2:
        raise MalformedSignature("signature is empty or truncated")
    if der[0] != _SEQUENCE_TAG:
        raise MalformedSignature(f"expected SEQUENCE tag, found 0x{der[0]:02x}")
    if der[1] & 0x80:
        raise MalformedSignature("unexpected long-form sequence length")

    r_raw, offset = _read_integer(der, 2)
    s_raw, _ = _read_integer(der, offset)

    r = _fit_component(r_raw)
    s = _fit_component(s_raw)

    s_value = int.from_bytes(s, "big")
    if s_value >= P256_ORDER:
        raise MalformedSignature("s is not below the P-256 group order")
    flipped = s_value > P256_HALF_ORDER
    if flipped:
        logger.debug("Normalizing signature s value to low-S form")
        s = (P256_ORDER - s_value).to_bytes(COMPONENT_BYTES, "big")

    return NormalizedSignature(r=r, s=s, low_s_applied=flipped)


def load_p256_public_key(value: Union[str, bytes, ec.EllipticCurvePublicKey]) -> ec.EllipticCurvePublicKey:
    """Load a P-256 public key from an SEC1 point or SPKI DER (bytes or hex)."""
    if isinstance(value, ec.EllipticCurvePublicKey):
        return value
    data = bytes.fromhex(value) if isinstance(value, str) else bytes(value)
    if data[:1] in (b"\x02", b"\x03", b"\x04"):
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), data)
    key = serialization.load_der_public_key(data)
    if not isinstance(key, ec.EllipticCurvePublicKey):
        raise ValueError("public key is not an elliptic curve key")
    return key


def verify_raw_signature(
    public_key: Union[str, bytes, ec.EllipticCurvePublicKey],
    message: bytes,
    raw_signature: bytes,
) -> bool:
    """
    Verify a 64-byte ``r || s`` signature over ``message`` the way the ledger does.

    High-S signatures are rejected even if mathematically valid.
    """
    if len(raw_signature) != RAW_SIGNATURE_BYTES:
        return False
    r = int.from_bytes(raw_signature[:COMPONENT_BYTES], "big")
    s = int.from_bytes(raw_signature[COMPONENT_BYTES:], "big")
    if not (0 < r < P256_ORDER) or not (0 < s <= P256_HALF_ORDER):
        return False

    key = load_p256_public_key(public_key)
    try:
        key.verify(encode_dss_signature(r, s), message, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return False
    return True
