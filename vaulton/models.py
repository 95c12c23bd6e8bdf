"""
Data models for the Vaulton SDK.

Plain dataclasses: the session record persisted by the session stores, the
ephemeral transfer intent and the parsed authenticator assertion.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Mapping, Optional

from vaulton.errors import InvalidIntent, MalformedSignature
from vaulton.utils import b64url_decode, is_wallet_address

# Persisted key names, shared with the browser SDK's localStorage record
SESSION_FIELDS = {
    "user_id": "userId",
    "smart_account_id": "smartAccountId",
    "passkey_pubkey": "passkeyPubkey",
    "public_key_hex": "publicKeyHex",
    "name": "name",
    "created_at": "createdAt",
    "credential_id": "credentialId",
}


def _text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass(frozen=True)
class Session:
    """One authenticated identity bound to one smart account."""

    user_id: str
    smart_account_id: str
    passkey_pubkey: str = ""
    public_key_hex: str = ""
    name: str = ""
    created_at: str = ""
    credential_id: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.user_id and self.smart_account_id)

    def to_dict(self) -> Dict[str, str]:
        data = asdict(self)
        return {SESSION_FIELDS[key]: value for key, value in data.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Session":
        """Build a Session from a persisted record (camelCase or snake_case keys)."""
        values = {}
        for attr, key in SESSION_FIELDS.items():
            values[attr] = _text(data.get(key, data.get(attr)))
        return cls(**values)


def build_session(user_info: Optional[Mapping[str, Any]], credential_id: Any = "") -> Session:
    """
    Build a session from an account-info payload.

    ``publicKeyHex`` falls back to ``passkeyPubkey`` when the backend only
    reports the latter.
    """
    info = user_info or {}
    return Session(
        user_id=_text(info.get("userId")),
        smart_account_id=_text(info.get("smartAccountId")),
        passkey_pubkey=_text(info.get("passkeyPubkey")),
        public_key_hex=_text(info.get("publicKeyHex") or info.get("passkeyPubkey")),
        name=_text(info.get("name")),
        created_at=_text(info.get("createdAt")),
        credential_id=_text(credential_id),
    )


@dataclass(frozen=True)
class TransferIntent:
    recipient: str
    amount_minor_units: int
    nonce: Optional[int] = None

    def validate(self, sender_account_id: str) -> None:
        """Raise InvalidIntent unless the intent is submittable from ``sender_account_id``."""
        if not is_wallet_address(self.recipient):
            raise InvalidIntent("recipient must be a valid Stellar address (G... or C...)")
        if self.recipient.strip() == sender_account_id:
            raise InvalidIntent("recipient must differ from the sending account")
        if not isinstance(self.amount_minor_units, int) or self.amount_minor_units <= 0:
            raise InvalidIntent("amount must be greater than 0")


@dataclass(frozen=True)
class Assertion:
    """Parsed WebAuthn authentication response.

    ``authenticator_data`` and ``client_data_json`` stay base64url encoded since
    that is how the backend expects them.
    """

    credential_id: str
    signature: bytes
    authenticator_data: str
    client_data_json: str
    user_handle: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_response(cls, response: Mapping[str, Any]) -> "Assertion":
        """
        Parse a simplewebauthn ``AuthenticationResponseJSON`` shaped dict.

        Raises:
            MalformedSignature: the response carries no decodable signature
        """
        if not isinstance(response, Mapping):
            raise MalformedSignature("assertion is not a JSON object")
        body = response.get("response")
        if not isinstance(body, Mapping):
            raise MalformedSignature("assertion has no response body")
        signature_b64 = body.get("signature")
        if not signature_b64:
            raise MalformedSignature("assertion has no signature")
        try:
            signature = b64url_decode(signature_b64)
        except (ValueError, TypeError) as exc:
            raise MalformedSignature(f"assertion signature is not base64url: {exc}") from exc

        return cls(
            credential_id=_text(response.get("id") or response.get("rawId")),
            signature=signature,
            authenticator_data=_text(body.get("authenticatorData")),
            client_data_json=_text(body.get("clientDataJSON")),
            user_handle=body.get("userHandle"),
            raw=dict(response),
        )
