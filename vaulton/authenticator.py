"""
Passkey authenticator collaborators.

The platform authenticator is opaque to the SDK: it receives WebAuthn ceremony
options and returns JSON shaped like simplewebauthn's
``RegistrationResponseJSON`` / ``AuthenticationResponseJSON``. Binary fields
are base64url strings.

Providers:

* ``Authenticator``: abstract base, subclass for a real platform bridge
* ``CallbackAuthenticator``: wrap plain functions (sync or async)
* ``SoftwareAuthenticator``: in-process P-256 keys, for development and tests

Example:
    >>> authenticator = SoftwareAuthenticator(rp_id="localhost", origin="http://localhost:3000")
    >>> wallet = PasskeyWallet(backend, authenticator, MemorySessionStore())
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import json
import secrets
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature, encode_dss_signature

from vaulton.signature import P256_HALF_ORDER, P256_ORDER
from vaulton.utils import b64url_decode, b64url_encode

# COSE algorithm identifier for ES256
COSE_ES256 = -7

# authenticatorData flags
FLAG_USER_PRESENT = 0x01
FLAG_USER_VERIFIED = 0x04


class AuthenticatorCancelled(Exception):
    """The user declined or dismissed the passkey prompt (WebAuthn NotAllowedError)."""


class Authenticator(ABC):
    """
    Base class for passkey providers.

    Subclass and implement ``create_credential`` and ``get_assertion`` for a
    concrete platform. Both are coroutines and may suspend indefinitely while
    a human acts; callers bound them with their own timeout.
    """

    @abstractmethod
    async def create_credential(self, options: Mapping[str, Any]) -> Dict[str, Any]:
        """Run a registration ceremony and return the registration response JSON."""

    @abstractmethod
    async def get_assertion(self, options: Mapping[str, Any]) -> Dict[str, Any]:
        """Run an authentication ceremony and return the assertion response JSON."""


async def _maybe_await(value: Union[Any, Awaitable[Any]]) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class CallbackAuthenticator(Authenticator):
    """
    Authenticator backed by caller-supplied functions.

    Example:
        >>> def prompt_device(options):
        ...     return bridge.request("navigator.credentials.get", options)
        >>> authenticator = CallbackAuthenticator(get_assertion=prompt_device)
    """

    def __init__(
        self,
        get_assertion: Callable[[Mapping[str, Any]], Any],
        create_credential: Optional[Callable[[Mapping[str, Any]], Any]] = None,
    ):
        self._get_assertion = get_assertion
        self._create_credential = create_credential

    async def create_credential(self, options: Mapping[str, Any]) -> Dict[str, Any]:
        if self._create_credential is None:
            raise NotImplementedError("No registration callback configured")
        return await _maybe_await(self._create_credential(options))

    async def get_assertion(self, options: Mapping[str, Any]) -> Dict[str, Any]:
        return await _maybe_await(self._get_assertion(options))


def to_high_s(der_signature: bytes) -> bytes:
    """Return the high-S twin of a DER signature (valid, but rejected by the ledger)."""
    r, s = decode_dss_signature(der_signature)
    if s <= P256_HALF_ORDER:
        s = P256_ORDER - s
    return encode_dss_signature(r, s)


class SoftwareAuthenticator(Authenticator):
    """
    In-process authenticator holding P-256 keys in memory.

    Produces real WebAuthn structures so a backend can verify them:
    ``authenticatorData = sha256(rp_id) || flags || sign_count`` and a DER
    signature over ``authenticatorData || sha256(clientDataJSON)``.

    Args:
        rp_id: Relying party id hashed into authenticatorData
        origin: Origin written into clientDataJSON
        deny: Raise AuthenticatorCancelled instead of signing
        high_s: Emit the high-S form of every signature
        delay: Seconds to wait before answering (simulates a slow user)
    """

    def __init__(
        self,
        rp_id: str = "localhost",
        origin: str = "http://localhost:3000",
        deny: bool = False,
        high_s: bool = False,
        delay: float = 0.0,
    ):
        self.rp_id = rp_id
        self.origin = origin
        self.deny = deny
        self.high_s = high_s
        self.delay = delay
        self._keys: Dict[str, ec.EllipticCurvePrivateKey] = {}
        self._user_handles: Dict[str, Optional[str]] = {}
        self._sign_counts: Dict[str, int] = {}
        self.ceremonies = 0

    @property
    def credential_ids(self) -> list:
        return list(self._keys)

    def add_credential(self, credential_id: Optional[str] = None, private_key: Optional[ec.EllipticCurvePrivateKey] = None) -> str:
        """Register a key pair without a ceremony and return its credential id."""
        credential_id = credential_id or b64url_encode(secrets.token_bytes(16))
        self._keys[credential_id] = private_key or ec.generate_private_key(ec.SECP256R1())
        self._sign_counts[credential_id] = 0
        self._user_handles.setdefault(credential_id, None)
        return credential_id

    def public_key(self, credential_id: str) -> ec.EllipticCurvePublicKey:
        return self._keys[credential_id].public_key()

    def public_key_point(self, credential_id: str) -> bytes:
        """Uncompressed SEC1 point (65 bytes) for ``credential_id``."""
        return self.public_key(credential_id).public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
        )

    async def _prompt(self) -> None:
        self.ceremonies += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.deny:
            raise AuthenticatorCancelled("The operation either timed out or was not allowed.")

    def _client_data(self, ceremony: str, challenge: str) -> bytes:
        data = {"type": ceremony, "challenge": challenge, "origin": self.origin, "crossOrigin": False}
        return json.dumps(data, separators=(",", ":")).encode("utf-8")

    def _authenticator_data(self, credential_id: str) -> bytes:
        self._sign_counts[credential_id] += 1
        flags = FLAG_USER_PRESENT | FLAG_USER_VERIFIED
        return (
            hashlib.sha256(self.rp_id.encode("utf-8")).digest()
            + bytes([flags])
            + self._sign_counts[credential_id].to_bytes(4, "big")
        )

    async def create_credential(self, options: Mapping[str, Any]) -> Dict[str, Any]:
        await self._prompt()
        credential_id = self.add_credential()
        user = options.get("user") or {}
        self._user_handles[credential_id] = user.get("id")

        client_data = self._client_data("webauthn.create", str(options.get("challenge", "")))
        spki = self.public_key(credential_id).public_bytes(
            serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        return {
            "id": credential_id,
            "rawId": credential_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": b64url_encode(client_data),
                "attestationObject": "",
                "authenticatorData": b64url_encode(self._authenticator_data(credential_id)),
                "publicKey": b64url_encode(spki),
                "publicKeyAlgorithm": COSE_ES256,
                "transports": ["internal"],
            },
            "clientExtensionResults": {},
            "authenticatorAttachment": "platform",
        }

    def _select_credential(self, options: Mapping[str, Any]) -> str:
        allowed = [entry.get("id") for entry in options.get("allowCredentials") or [] if entry.get("id")]
        for credential_id in allowed:
            if credential_id in self._keys:
                return credential_id
        if allowed or not self._keys:
            raise AuthenticatorCancelled("No matching passkey on this authenticator.")
        return next(iter(self._keys))

    async def get_assertion(self, options: Mapping[str, Any]) -> Dict[str, Any]:
        await self._prompt()
        credential_id = self._select_credential(options)

        client_data = self._client_data("webauthn.get", str(options.get("challenge", "")))
        auth_data = self._authenticator_data(credential_id)
        signed = auth_data + hashlib.sha256(client_data).digest()
        signature = self._keys[credential_id].sign(signed, ec.ECDSA(hashes.SHA256()))
        if self.high_s:
            signature = to_high_s(signature)

        return {
            "id": credential_id,
            "rawId": credential_id,
            "type": "public-key",
            "response": {
                "authenticatorData": b64url_encode(auth_data),
                "clientDataJSON": b64url_encode(client_data),
                "signature": b64url_encode(signature),
                "userHandle": self._user_handles.get(credential_id),
            },
            "clientExtensionResults": {},
            "authenticatorAttachment": "platform",
        }


def decode_client_data(client_data_json: str) -> Dict[str, Any]:
    """Decode a base64url ``clientDataJSON`` field."""
    return json.loads(b64url_decode(client_data_json).decode("utf-8"))
