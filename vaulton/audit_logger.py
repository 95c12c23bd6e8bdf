"""
Audit logging for the Vaulton SDK.

Events go to the ``audit`` logger as pipe-delimited records.
Signatures, keys and client data never reach the log; only identifiers,
amounts and outcomes do.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

_logger = logging.getLogger("audit")
_audit_logger = None


def init_audit_logger():
    """Attach the audit handler once and create the shared AuditLogger."""
    global _audit_logger

    _logger.setLevel(logging.INFO)
    if not _logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - VAULTON AUDIT - %(levelname)s - %(message)s"))
        _logger.addHandler(handler)

    _audit_logger = AuditLogger()
    _logger.debug("Vaulton audit logger ready")


def get_audit_logger():
    if _audit_logger is None:
        init_audit_logger()
    return _audit_logger


def init_logging(cfg: Mapping[str, Any]) -> None:
    """Set the root log level from ``LOG_LEVEL`` and install a JSON-ish handler."""
    log_level = str(cfg.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, log_level, logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if not any(isinstance(handler, logging.StreamHandler) for handler in root_logger.handlers):
        handler = logging.StreamHandler()
        fmt = (
            "{\"level\":\"%(levelname)s\",\"msg\":\"%(message)s\",\"name\":\"%(name)s\",\"path\":\"%(pathname)s\","
            "\"lineno\":%(lineno)d}"
        )
        handler.setFormatter(logging.Formatter(fmt))
        root_logger.addHandler(handler)


def _short(value: Optional[str], keep: int = 8) -> str:
    text = str(value or "")
    if len(text) <= keep:
        return text
    return f"{text[:keep]}..."


class AuditLogger:
    """
    Audit logging interface for wallet security events.

    Covers the session lifecycle, passkey ceremonies and transfer outcomes.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or _logger

    def log_event(self, event: str, **details: Any) -> None:
        """Generic structured audit event."""

        payload = {"event": event, **details, "timestamp": datetime.now(timezone.utc).isoformat()}
        self.logger.info(json.dumps(payload, default=str))

    def log_session_created(self, user_id: str, account_id: str, method: str):
        """Log a session persisted after signup or login."""
        self.logger.info(f"SESSION_CREATED | user={user_id} | account={_short(account_id)} | method={method}")

    def log_session_destroyed(self, user_id: Optional[str], reason: str = "logout"):
        """Log session destruction."""
        self.logger.info(f"SESSION_DESTROYED | user={user_id} | reason={reason}")

    def log_auth_attempt(self, user_id: Optional[str], method: str, success: bool, error: Optional[str] = None):
        """Log a passkey registration or login ceremony."""
        status = "SUCCESS" if success else "FAILURE"
        msg = f"AUTH_ATTEMPT | user={user_id} | method={method} | status={status}"
        if error:
            msg += f" | error={error}"
        self.logger.info(msg)

    def log_transfer_attempt(self, account_id: str, recipient: str, amount_minor_units: int):
        """Log the start of a transfer authorization."""
        self.logger.info(
            f"TRANSFER_ATTEMPT | account={_short(account_id)} | recipient={_short(recipient)} | amount={amount_minor_units}"
        )

    def log_transfer_result(
        self,
        account_id: str,
        success: bool,
        state: str,
        tx_hash: Optional[str] = None,
        error_kind: Optional[str] = None,
    ):
        """Log the terminal state of a transfer authorization."""
        status = "SUCCESS" if success else "FAILURE"
        msg = f"TRANSFER_RESULT | account={_short(account_id)} | status={status} | state={state}"
        if tx_hash:
            msg += f" | tx={tx_hash}"
        if error_kind:
            msg += f" | error={error_kind}"
        self.logger.info(msg)

    def log_signature_normalized(self, credential_id: str, flipped: bool):
        """Log signature conversion; ``flipped`` is True when high-S was canonicalized."""
        self.logger.info(f"SIG_NORMALIZED | credential={_short(credential_id, 16)} | low_s_applied={flipped}")

    def log_backend_call(self, endpoint: str, success: bool, status_code: Optional[int] = None):
        """Log a backend HTTP call."""
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"BACKEND_CALL | endpoint={endpoint} | status={status} | code={status_code}")

    def log_error(self, error_type: str, error_msg: str, context: Optional[Dict[str, Any]] = None):
        """Log SDK error."""
        msg = f"ERROR | type={error_type} | msg={error_msg}"
        if context:
            msg += f" | context={context}"
        self.logger.error(msg)
