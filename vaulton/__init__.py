"""
Vaulton: passkey-authenticated USDC transfers from keyless smart accounts.

    >>> from vaulton import create_wallet
    >>> wallet = create_wallet()
    >>> session = await wallet.login()
    >>> result = await wallet.transfer("GB...", "2.50")
"""

from vaulton.challenge import TRANSFER_OPERATION, Challenge, build_challenge, build_transfer_challenge
from vaulton.codecs import amount_to_bytes, encode_amount, encode_nonce, format_minor_units, to_minor_units
from vaulton.errors import (
    AmountOverflow,
    AssertionDenied,
    AssertionTimeout,
    AuthenticationFailed,
    BackendError,
    InvalidAmount,
    InvalidIntent,
    InvalidSession,
    MalformedSignature,
    NetworkFailure,
    NonceUnavailable,
    NoSession,
    SubmissionRejected,
    VaultonError,
)
from vaulton.models import Assertion, Session, TransferIntent
from vaulton.signature import NormalizedSignature, normalize_signature, verify_raw_signature
from vaulton.storage import FileSessionStore, MemorySessionStore, RedisSessionStore, SessionStore
from vaulton.transfer import TransferOrchestrator, TransferResult, TransferState
from vaulton.wallet import PasskeyWallet, create_wallet

__version__ = "0.1.0"

__all__ = [
    "TRANSFER_OPERATION",
    "AmountOverflow",
    "Assertion",
    "AssertionDenied",
    "AssertionTimeout",
    "AuthenticationFailed",
    "BackendError",
    "Challenge",
    "FileSessionStore",
    "InvalidAmount",
    "InvalidIntent",
    "InvalidSession",
    "MalformedSignature",
    "MemorySessionStore",
    "NetworkFailure",
    "NoSession",
    "NonceUnavailable",
    "NormalizedSignature",
    "PasskeyWallet",
    "RedisSessionStore",
    "Session",
    "SessionStore",
    "SubmissionRejected",
    "TransferIntent",
    "TransferOrchestrator",
    "TransferResult",
    "TransferState",
    "VaultonError",
    "amount_to_bytes",
    "build_challenge",
    "build_transfer_challenge",
    "create_wallet",
    "encode_amount",
    "encode_nonce",
    "format_minor_units",
    "normalize_signature",
    "to_minor_units",
    "verify_raw_signature",
]
