"""Vaulton backend client.

Thin ``requests`` wrapper over the wallet backend that issues passkey
challenges, tracks smart-account nonces and broadcasts ledger transactions.
Calls are blocking; the transfer orchestrator runs them in a worker thread.
"""

import logging
from typing import Any, Dict, Mapping, Optional

import requests

from vaulton.audit_logger import get_audit_logger
from vaulton.config import DEFAULT_BACKEND_URL
from vaulton.errors import BackendError, NetworkFailure
from vaulton.utils import normalize_base_url

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()


def _parse_body(resp: requests.Response) -> Dict[str, Any]:
    text = resp.text
    if not text:
        return {}
    try:
        payload = resp.json()
    except ValueError:
        return {"message": text}
    return payload if isinstance(payload, dict) else {"result": payload}


class BackendClient:
    """
    Client for the wallet backend REST API.

    Args:
        base_url: Backend root URL
        timeout: Per-request timeout in seconds
        session: Optional ``requests.Session`` (connection pooling, test adapters)
    """

    def __init__(self, base_url: str = DEFAULT_BACKEND_URL, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.base_url = normalize_base_url(base_url, DEFAULT_BACKEND_URL)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Content-Type": "application/json",
                "ngrok-skip-browser-warning": "true",
            }
        )

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "BackendClient":
        return cls(base_url=cfg["VAULTON_BACKEND_URL"], timeout=cfg.get("HTTP_TIMEOUT_SECONDS", 30.0))

    def _request(self, method: str, path: str, body: Optional[Mapping[str, Any]] = None, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(
                method,
                url,
                json=dict(body) if body is not None else None,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"{method} {path} failed: {e}")
            audit_logger.log_backend_call(path, success=False)
            raise NetworkFailure(f"{method} {path} could not complete: {e}") from e

        payload = _parse_body(resp)
        if resp.status_code >= 300:
            reason = payload.get("error") or payload.get("message") or f"{method} {path} failed ({resp.status_code})"
            audit_logger.log_backend_call(path, success=False, status_code=resp.status_code)
            raise BackendError(str(reason), status_code=resp.status_code, data=payload)

        audit_logger.log_backend_call(path, success=True, status_code=resp.status_code)
        return payload

    def health(self) -> Dict[str, Any]:
        return self._request("GET", "/health")

    def register_challenge(self) -> Dict[str, Any]:
        """Request registration ceremony options: ``{"options": {...}}``."""
        return self._request("POST", "/register-challenge", {})

    def register_verify(self, credential: Mapping[str, Any]) -> Dict[str, Any]:
        """Submit a registration response: ``{"success", "userId"}``."""
        return self._request("POST", "/register-verify", {"cred": credential})

    def login_challenge(self) -> Dict[str, Any]:
        """Request authentication ceremony options: ``{"options": {...}}``."""
        return self._request("POST", "/login-challenge", {})

    def login_verify(self, assertion: Mapping[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/login-verify", {"cred": assertion})

    def get_account_info(self, user_id: str) -> Dict[str, Any]:
        return self._request("GET", "/user-info", params={"userId": user_id})

    def deploy_smart_account(self, user_id: str, credential_id: str, passkey_pubkey: Optional[str]) -> Dict[str, Any]:
        """Deploy the per-user smart account contract bound to the passkey."""
        return self._request(
            "POST",
            "/deploy-child",
            {"keyId": credential_id, "passkeyPubkey": passkey_pubkey, "userId": user_id},
        )

    def get_balance(self, account_id: str) -> Dict[str, Any]:
        return self._request("POST", "/get-usdc-balance", {"childId": account_id})

    def get_nonce(self, account_id: str) -> Dict[str, Any]:
        """Current replay-protection nonce: ``{"nonce": "<u64 decimal>"}``."""
        return self._request("POST", "/get-nonce", {"childId": account_id})

    def submit_transfer(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Broadcast a signed transfer: ``{"success", "transactionHash"}`` or ``{"success": False, "error"}``."""
        return self._request("POST", "/transfer-usdc", payload)
