"""Error taxonomy for the passkey transfer protocol.

Every error carries a stable ``kind`` string so callers (and UIs) can branch on
the outcome without matching exception messages.
"""

from __future__ import annotations

from typing import Any, Optional


class VaultonError(Exception):
    """Base error for the Vaulton SDK."""

    kind = "VaultonError"

    def __init__(self, reason: str = "", *, failed_state: Any = None, data: Any = None):
        super().__init__(reason or self.kind)
        self.reason = reason or self.kind
        self.failed_state = failed_state
        self.data = data

    def to_dict(self) -> dict:
        state = getattr(self.failed_state, "value", self.failed_state)
        return {"kind": self.kind, "reason": self.reason, "state": state}


class InvalidAmount(VaultonError, ValueError):
    """Amount text is empty, non-numeric, too precise or zero."""

    kind = "InvalidAmount"


class AmountOverflow(VaultonError, ValueError):
    """Amount does not fit in 128 bits of minor units."""

    kind = "AmountOverflow"


class InvalidIntent(VaultonError, ValueError):
    """Bad recipient, self-transfer or non-positive amount."""

    kind = "InvalidIntent"


class InvalidSession(VaultonError, ValueError):
    """Session is missing its user id or smart account id."""

    kind = "InvalidSession"


class MalformedSignature(VaultonError, ValueError):
    """Authenticator signature is not a well-formed DER integer pair."""

    kind = "MalformedSignature"


class NoSession(VaultonError):
    kind = "NoSession"


class NonceUnavailable(VaultonError):
    kind = "NonceUnavailable"


class AssertionDenied(VaultonError):
    """The user declined or dismissed the passkey prompt. Not retriable."""

    kind = "AssertionDenied"


class AssertionTimeout(VaultonError):
    kind = "AssertionTimeout"


class SubmissionRejected(VaultonError):
    kind = "SubmissionRejected"


class NetworkFailure(VaultonError):
    """A collaborator call could not complete."""

    kind = "NetworkFailure"


class BackendError(VaultonError):
    """The backend answered with a non-success HTTP status."""

    kind = "BackendError"

    def __init__(self, reason: str = "", status_code: Optional[int] = None, **kwargs: Any):
        super().__init__(reason, **kwargs)
        self.status_code = status_code


class AuthenticationFailed(VaultonError):
    """Signup or login was not accepted by the backend."""

    kind = "AuthenticationFailed"
