"""
Passkey-authorized transfer orchestration.

One coarse operation, "authorize and submit a transfer of X to Y", driven as a
state machine:

    IDLE -> FETCHING_NONCE -> BUILDING_CHALLENGE -> AWAITING_ASSERTION
         -> NORMALIZING_SIGNATURE -> SUBMITTING -> SUCCEEDED | FAILED

Local validation (session, recipient, amount) happens before any network
call so a bad intent never burns a ceremony. Every failure ends the attempt
in FAILED with exactly one error kind; nothing is retried here. Transfers for
the same smart account are serialized so two ceremonies never race for one
nonce.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Deque, Dict, List, Mapping, Optional

from vaulton.audit_logger import get_audit_logger
from vaulton.authenticator import AuthenticatorCancelled
from vaulton.challenge import TRANSFER_OPERATION, Challenge, build_challenge
from vaulton.codecs import amount_to_bytes, encode_nonce, parse_nonce, to_minor_units
from vaulton.errors import (
    AssertionDenied,
    AssertionTimeout,
    BackendError,
    MalformedSignature,
    NetworkFailure,
    NonceUnavailable,
    NoSession,
    SubmissionRejected,
    VaultonError,
)
from vaulton.models import Assertion, Session, TransferIntent
from vaulton.signature import normalize_signature
from vaulton.storage import SessionStore

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()

DEFAULT_ASSERTION_TIMEOUT = 120.0


async def call_backend(fn: Callable[..., Any], *args: Any) -> Any:
    """Await ``fn(*args)``; blocking callables run in a worker thread.

    Anything that is not already a VaultonError surfaces as NetworkFailure.
    """
    try:
        if inspect.iscoroutinefunction(fn):
            return await fn(*args)
        return await asyncio.to_thread(fn, *args)
    except VaultonError:
        raise
    except Exception as exc:
        raise NetworkFailure(f"{getattr(fn, '__name__', 'backend call')} failed: {exc}") from exc


class TransferState(str, Enum):
    IDLE = "idle"
    FETCHING_NONCE = "fetching_nonce"
    BUILDING_CHALLENGE = "building_challenge"
    AWAITING_ASSERTION = "awaiting_assertion"
    NORMALIZING_SIGNATURE = "normalizing_signature"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferState.SUCCEEDED, TransferState.FAILED)


@dataclass(frozen=True)
class TransferResult:
    transaction_hash: Optional[str]
    account_id: str
    recipient: str
    amount_minor_units: int
    nonce: int
    signature_hex: str
    challenge: str
    response: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class TransferAttempt:
    """Progress record of one transfer invocation."""

    recipient: str
    account_id: str = ""
    amount_minor_units: Optional[int] = None
    state: TransferState = TransferState.IDLE
    history: List[TransferState] = field(default_factory=lambda: [TransferState.IDLE])
    nonce: Optional[int] = None
    challenge: Optional[Challenge] = None
    error: Optional[VaultonError] = None
    cancelled: bool = False
    result: Optional[TransferResult] = None

    @property
    def error_kind(self) -> Optional[str]:
        if self.cancelled:
            return "Cancelled"
        return self.error.kind if self.error else None


@dataclass
class _AccountGuard:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class TransferOrchestrator:
    """
    Sequences nonce lookup, challenge construction, the passkey ceremony,
    signature normalization and submission.

    Args:
        backend: Nonce, ceremony-options and submission collaborator. Methods
            may be plain functions (run in a worker thread) or coroutines.
        authenticator: Passkey collaborator with ``get_assertion(options)``
        store: Session store; read only, never written by transfers
        assertion_timeout: Default bound on the ceremony, in seconds
        operation: Operation tag hashed into the challenge
        on_state_change: Called with ``(attempt, state)`` on every transition
    """

    def __init__(
        self,
        backend: Any,
        authenticator: Any,
        store: SessionStore,
        assertion_timeout: float = DEFAULT_ASSERTION_TIMEOUT,
        operation: str = TRANSFER_OPERATION,
        on_state_change: Optional[Callable[[TransferAttempt, TransferState], None]] = None,
        history_size: int = 50,
    ):
        self.backend = backend
        self.authenticator = authenticator
        self.store = store
        self.assertion_timeout = assertion_timeout
        self.operation = operation
        self.on_state_change = on_state_change
        self.attempts: Deque[TransferAttempt] = deque(maxlen=history_size)
        self._guards: Dict[str, _AccountGuard] = {}
        self._in_flight: set = set()

    @property
    def last_attempt(self) -> Optional[TransferAttempt]:
        return self.attempts[-1] if self.attempts else None

    def is_busy(self, account_id: str) -> bool:
        """True while a transfer for ``account_id`` is past the guard."""
        return account_id in self._in_flight

    async def transfer(self, recipient: str, amount: Any, *, timeout: Optional[float] = None) -> TransferResult:
        """
        Authorize and submit a transfer of ``amount`` (decimal text) to ``recipient``.

        Raises:
            VaultonError: the kind names the failed step, see ``vaulton.errors``
        """
        return await self._run(str(recipient or "").strip(), amount, None, timeout)

    async def execute(self, intent: TransferIntent, *, timeout: Optional[float] = None) -> TransferResult:
        """Run an already-parsed intent. Any nonce on the intent is ignored; a fresh one is fetched."""
        return await self._run(str(intent.recipient or "").strip(), None, intent.amount_minor_units, timeout)

    def _enter(self, attempt: TransferAttempt, state: TransferState) -> None:
        attempt.state = state
        attempt.history.append(state)
        logger.debug(f"Transfer to {attempt.recipient[:8]}... -> {state.value}")
        if self.on_state_change is not None:
            self.on_state_change(attempt, state)

    def _fail(self, attempt: TransferAttempt, error: Optional[VaultonError]) -> None:
        if error is not None and error.failed_state is None:
            error.failed_state = attempt.state
        attempt.error = error
        self._enter(attempt, TransferState.FAILED)
        audit_logger.log_transfer_result(
            attempt.account_id,
            success=False,
            state=(error.failed_state.value if error is not None else TransferState.FAILED.value),
            error_kind=attempt.error_kind,
        )

    def _require_session(self) -> Session:
        session = self.store.load()
        if session is None or not session.is_complete:
            raise NoSession("No active session. Log in or sign up first.")
        return session

    @contextlib.asynccontextmanager
    async def _account_guard(self, account_id: str) -> AsyncIterator[None]:
        guard = self._guards.get(account_id)
        if guard is None:
            guard = self._guards[account_id] = _AccountGuard()
        guard.users += 1
        try:
            async with guard.lock:
                self._in_flight.add(account_id)
                try:
                    yield
                finally:
                    self._in_flight.discard(account_id)
        finally:
            guard.users -= 1
            if guard.users == 0:
                self._guards.pop(account_id, None)

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await call_backend(fn, *args)

    async def _run(self, recipient: str, amount: Any, amount_minor: Optional[int], timeout: Optional[float]) -> TransferResult:
        attempt = TransferAttempt(recipient=recipient)
        self.attempts.append(attempt)
        try:
            session = self._require_session()
            attempt.account_id = session.smart_account_id
            if amount_minor is None:
                amount_minor = to_minor_units(amount)
            intent = TransferIntent(recipient=recipient, amount_minor_units=amount_minor)
            intent.validate(session.smart_account_id)
            attempt.amount_minor_units = amount_minor
            amount_bytes = amount_to_bytes(amount_minor)

            audit_logger.log_transfer_attempt(session.smart_account_id, recipient, amount_minor)
            async with self._account_guard(session.smart_account_id):
                result = await self._authorize_and_submit(attempt, session, intent, amount_bytes, timeout)
        except VaultonError as exc:
            self._fail(attempt, exc)
            raise
        except asyncio.CancelledError:
            attempt.cancelled = True
            self._fail(attempt, None)
            logger.info(f"Transfer from {attempt.account_id[:8]}... abandoned by caller")
            raise

        attempt.result = result
        self._enter(attempt, TransferState.SUCCEEDED)
        audit_logger.log_transfer_result(
            attempt.account_id, success=True, state=TransferState.SUCCEEDED.value, tx_hash=result.transaction_hash
        )
        return result

    async def _fetch_nonce(self, account_id: str) -> int:
        try:
            payload = await self._call(self.backend.get_nonce, account_id)
        except VaultonError as exc:
            raise NonceUnavailable(f"Could not fetch account nonce: {exc.reason}") from exc
        if not isinstance(payload, Mapping):
            raise NonceUnavailable("Could not fetch account nonce.")
        return parse_nonce(payload.get("nonce"))

    async def _ceremony_options(self, challenge: Challenge) -> Dict[str, Any]:
        try:
            login_data = await self._call(self.backend.login_challenge)
        except BackendError as exc:
            raise NetworkFailure(f"Could not fetch passkey options: {exc.reason}") from exc
        options = login_data.get("options") if isinstance(login_data, Mapping) else None
        if not options:
            raise NetworkFailure("No passkey options returned from backend.")
        return {**options, "challenge": challenge.wire_encoding}

    async def _request_assertion(self, options: Mapping[str, Any], timeout: float) -> Mapping[str, Any]:
        try:
            response = await asyncio.wait_for(self.authenticator.get_assertion(options), timeout)
        except asyncio.TimeoutError as exc:
            raise AssertionTimeout(f"Passkey prompt was not answered within {timeout:g}s") from exc
        except AuthenticatorCancelled as exc:
            raise AssertionDenied(str(exc) or "Passkey prompt was declined") from exc
        except VaultonError:
            raise
        except Exception as exc:
            raise AssertionDenied(f"Authenticator failed: {exc}") from exc

        if not isinstance(response, Mapping):
            raise MalformedSignature("Authenticator returned no assertion")
        return response

    async def _authorize_and_submit(
        self,
        attempt: TransferAttempt,
        session: Session,
        intent: TransferIntent,
        amount_bytes: bytes,
        timeout: Optional[float],
    ) -> TransferResult:
        account_id = session.smart_account_id

        self._enter(attempt, TransferState.FETCHING_NONCE)
        nonce = await self._fetch_nonce(account_id)
        attempt.nonce = nonce

        self._enter(attempt, TransferState.BUILDING_CHALLENGE)
        challenge = build_challenge(self.operation, amount_bytes, encode_nonce(nonce))
        attempt.challenge = challenge
        options = await self._ceremony_options(challenge)

        self._enter(attempt, TransferState.AWAITING_ASSERTION)
        response = await self._request_assertion(options, timeout or self.assertion_timeout)

        self._enter(attempt, TransferState.NORMALIZING_SIGNATURE)
        assertion = Assertion.from_response(response)
        signature = normalize_signature(assertion.signature)
        audit_logger.log_signature_normalized(assertion.credential_id, signature.low_s_applied)

        self._enter(attempt, TransferState.SUBMITTING)
        payload = {
            "childId": account_id,
            "recipient": intent.recipient,
            "amount": str(intent.amount_minor_units),
            "signatureHex": signature.hex,
            "authData": assertion.authenticator_data,
            "clientDataJSON": assertion.client_data_json,
            "userId": session.user_id,
        }
        try:
            transfer_data = await self._call(self.backend.submit_transfer, payload)
        except BackendError as exc:
            raise SubmissionRejected(exc.reason, data=exc.data) from exc

        if not isinstance(transfer_data, Mapping) or not transfer_data.get("success"):
            reason = transfer_data.get("error") if isinstance(transfer_data, Mapping) else None
            raise SubmissionRejected(reason or "USDC transfer failed.", data=transfer_data)

        return TransferResult(
            transaction_hash=transfer_data.get("transactionHash") or transfer_data.get("txHash"),
            account_id=account_id,
            recipient=intent.recipient,
            amount_minor_units=intent.amount_minor_units,
            nonce=nonce,
            signature_hex=signature.hex,
            challenge=challenge.wire_encoding,
            response=dict(transfer_data),
        )
