"""
Passkey wallet facade.

Ties the backend client, a passkey authenticator and a session store together
behind the handful of calls an application needs:

    >>> wallet = create_wallet(load_config(), SoftwareAuthenticator())
    >>> session = await wallet.signup()
    >>> await wallet.transfer("GB...", "2.50")

Signup and login persist a session only once every step has succeeded.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

from vaulton.audit_logger import get_audit_logger
from vaulton.authenticator import AuthenticatorCancelled
from vaulton.backend import BackendClient
from vaulton.config import load_config
from vaulton.errors import AssertionDenied, AssertionTimeout, AuthenticationFailed, InvalidSession, NoSession, VaultonError
from vaulton.models import Session, build_session
from vaulton.storage import SessionStore, create_session_store
from vaulton.transfer import DEFAULT_ASSERTION_TIMEOUT, TransferOrchestrator, TransferResult, call_backend

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()


class PasskeyWallet:
    """
    Keyless smart-account wallet driven by a passkey.

    Args:
        backend: Backend collaborator (normally a ``BackendClient``)
        authenticator: Passkey collaborator
        store: Where the logged-in session lives
        orchestrator: Transfer orchestrator; built from the above if omitted
        assertion_timeout: Bound on every passkey prompt, in seconds
    """

    def __init__(
        self,
        backend: Any,
        authenticator: Any,
        store: SessionStore,
        orchestrator: Optional[TransferOrchestrator] = None,
        assertion_timeout: float = DEFAULT_ASSERTION_TIMEOUT,
    ):
        self.backend = backend
        self.authenticator = authenticator
        self.store = store
        self.assertion_timeout = assertion_timeout
        self.orchestrator = orchestrator or TransferOrchestrator(
            backend, authenticator, store, assertion_timeout=assertion_timeout
        )

    # Session

    def get_session(self) -> Optional[Session]:
        return self.store.load()

    def restore_session(self) -> Optional[Session]:
        """Return the persisted session if it is complete, else None."""
        session = self.store.load()
        if session is None or not session.is_complete:
            return None
        return session

    def is_logged_in(self) -> bool:
        return self.store.is_active()

    def logout(self) -> None:
        session = self.store.load()
        self.store.clear()
        audit_logger.log_session_destroyed(session.user_id if session else None, reason="logout")

    # Ceremonies

    async def _ceremony(self, method: Any, options: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            return await asyncio.wait_for(method(options), self.assertion_timeout)
        except asyncio.TimeoutError as exc:
            raise AssertionTimeout(f"Passkey prompt was not answered within {self.assertion_timeout:g}s") from exc
        except AuthenticatorCancelled as exc:
            raise AssertionDenied(str(exc) or "Passkey prompt was declined") from exc
        except VaultonError:
            raise
        except Exception as exc:
            raise AssertionDenied(f"Authenticator failed: {exc}") from exc

    async def _options(self, fn: Any, what: str) -> Dict[str, Any]:
        data = await call_backend(fn)
        options = data.get("options") if isinstance(data, Mapping) else None
        if not options:
            raise AuthenticationFailed(f"No {what} options returned from backend.")
        return options

    @staticmethod
    def _verified_user_id(verify_data: Any, default_reason: str) -> str:
        if not isinstance(verify_data, Mapping):
            raise AuthenticationFailed(default_reason)
        if not (verify_data.get("success") or verify_data.get("verified")) or not verify_data.get("userId"):
            raise AuthenticationFailed(str(verify_data.get("error") or default_reason), data=dict(verify_data))
        return str(verify_data["userId"])

    def _persist(self, user_info: Mapping[str, Any], credential_id: str, method: str) -> Session:
        session = build_session(user_info, credential_id)
        if not session.is_complete:
            raise InvalidSession("backend returned an account without userId or smartAccountId")
        self.store.save(session)
        audit_logger.log_session_created(session.user_id, session.smart_account_id, method)
        return session

    async def signup(self) -> Session:
        """
        Register a new passkey, deploy its smart account and log in.

        Returns:
            The persisted Session

        Raises:
            AssertionDenied, AssertionTimeout: passkey prompt not completed
            AuthenticationFailed: backend refused the registration
            NetworkFailure, BackendError: backend unreachable or erroring
        """
        user_id = None
        try:
            options = await self._options(self.backend.register_challenge, "registration")
            credential = await self._ceremony(self.authenticator.create_credential, options)
            verify_data = await call_backend(self.backend.register_verify, credential)
            user_id = self._verified_user_id(verify_data, "Account signup failed.")
            credential_id = str(credential.get("id") or "")

            user_info = await call_backend(self.backend.get_account_info, user_id)
            if not user_info.get("smartAccountId"):
                logger.info(f"Deploying smart account for user {user_id}")
                await call_backend(
                    self.backend.deploy_smart_account, user_id, credential_id, user_info.get("passkeyPubkey")
                )
                user_info = await call_backend(self.backend.get_account_info, user_id)

            session = self._persist(user_info, credential_id, "signup")
        except VaultonError as exc:
            audit_logger.log_auth_attempt(user_id, "signup", success=False, error=exc.kind)
            raise

        audit_logger.log_auth_attempt(session.user_id, "signup", success=True)
        return session

    async def login(self) -> Session:
        """Authenticate with an existing passkey and persist the session."""
        user_id = None
        try:
            options = await self._options(self.backend.login_challenge, "login")
            assertion = await self._ceremony(self.authenticator.get_assertion, options)
            verify_data = await call_backend(self.backend.login_verify, assertion)
            user_id = self._verified_user_id(verify_data, "Login failed.")

            user_info = await call_backend(self.backend.get_account_info, user_id)
            session = self._persist(user_info, str(assertion.get("id") or ""), "login")
        except VaultonError as exc:
            audit_logger.log_auth_attempt(user_id, "login", success=False, error=exc.kind)
            raise

        audit_logger.log_auth_attempt(session.user_id, "login", success=True)
        return session

    # Account

    async def get_account_info(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        session = self.store.load()
        target = str(user_id or (session.user_id if session else "") or "").strip()
        if not target:
            raise NoSession("userId is required")
        return await call_backend(self.backend.get_account_info, target)

    async def get_balance(self, account_id: Optional[str] = None) -> Dict[str, Any]:
        """Return ``{"balance", "balanceInStroops", "balanceInUsdc"}`` for the account."""
        session = self.store.load()
        target = str(account_id or (session.smart_account_id if session else "") or "").strip()
        if not target:
            raise NoSession("childId is required")
        return await call_backend(self.backend.get_balance, target)

    async def transfer(self, recipient: str, amount: Any, *, timeout: Optional[float] = None) -> TransferResult:
        return await self.orchestrator.transfer(recipient, amount, timeout=timeout)


def create_wallet(cfg: Optional[Mapping[str, Any]] = None, authenticator: Any = None) -> PasskeyWallet:
    """
    Build a wallet from configuration.

    Without an explicit authenticator a ``SoftwareAuthenticator`` bound to
    ``RP_ID`` / ``RP_ORIGIN`` is used, which only suits development.
    """
    cfg = cfg or load_config()
    if authenticator is None:
        from vaulton.authenticator import SoftwareAuthenticator

        logger.warning("No authenticator supplied; using in-process software keys")
        authenticator = SoftwareAuthenticator(rp_id=cfg.get("RP_ID", "localhost"), origin=cfg.get("RP_ORIGIN", ""))

    return PasskeyWallet(
        BackendClient.from_config(cfg),
        authenticator,
        create_session_store(cfg),
        assertion_timeout=cfg.get("ASSERTION_TIMEOUT_SECONDS", DEFAULT_ASSERTION_TIMEOUT),
    )
