"""
Development backend for the Vaulton SDK.

A self-contained Flask app that speaks the same REST API as the hosted wallet
backend, with the ledger replaced by an in-memory ``DevLedger``. It verifies
passkey signatures exactly like the smart account contract: the transfer
challenge is re-derived from ``(amount, nonce)``, the signature must be a
64-byte low-S ``r || s`` pair over ``authData || sha256(clientDataJSON)``,
and every accepted transfer bumps the nonce.

Registration trusts the ``response.publicKey`` field; there is no attestation
checking. Do not expose this outside a development machine.
"""

import hashlib
import json
import logging
import secrets
import threading
import time
import uuid
from base64 import b32encode
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from flask import Blueprint, Flask, current_app, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from vaulton.audit_logger import init_audit_logger, init_logging
from vaulton.authenticator import COSE_ES256
from vaulton.challenge import build_transfer_challenge
from vaulton.codecs import MAX_AMOUNT, format_minor_units
from vaulton.config import get_config
from vaulton.signature import load_p256_public_key, verify_raw_signature
from vaulton.utils import b64url_decode, b64url_encode, is_wallet_address

logger = logging.getLogger(__name__)

dev_bp = Blueprint("dev_backend", __name__)

CHALLENGE_TTL_SECONDS = 300
CEREMONY_TIMEOUT_MS = 120_000

limiter: Optional[Limiter] = None


class LedgerError(Exception):
    """Request refused by the development ledger."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _contract_address() -> str:
    # 35 random bytes -> 56 base32 chars, same shape as a C... strkey
    return "C" + b32encode(secrets.token_bytes(35)).decode("ascii")[:55]


class DevLedger:
    """
    In-memory users, passkeys, smart accounts and USDC balances.

    All methods are thread-safe; Flask may serve requests concurrently.
    """

    def __init__(self, rp_id: str = "localhost", rp_name: str = "Vaulton", initial_balance: int = 1000 * 10_000_000):
        self.rp_id = rp_id
        self.rp_name = rp_name
        self.initial_balance = initial_balance
        self.users: Dict[str, Dict[str, Any]] = {}
        self.credentials: Dict[str, str] = {}
        self.public_keys: Dict[str, ec.EllipticCurvePublicKey] = {}
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.transactions: List[Dict[str, Any]] = []
        self._challenges: Dict[str, tuple] = {}
        self._lock = threading.RLock()

    # Challenges

    def _purge_challenges(self) -> None:
        cutoff = time.time() - CHALLENGE_TTL_SECONDS
        for key in [k for k, (_, issued) in self._challenges.items() if issued < cutoff]:
            self._challenges.pop(key, None)

    def issue_challenge(self, purpose: str) -> str:
        challenge = b64url_encode(secrets.token_bytes(32))
        with self._lock:
            self._purge_challenges()
            self._challenges[challenge] = (purpose, time.time())
        return challenge

    def consume_challenge(self, challenge: str, purpose: str) -> None:
        with self._lock:
            self._purge_challenges()
            entry = self._challenges.get(challenge)
            if entry is None or entry[0] != purpose:
                raise LedgerError("Challenge not found. Please try again.")
            self._challenges.pop(challenge)

    # Ceremonies

    def registration_options(self) -> Dict[str, Any]:
        timestamp = format(int(time.time() * 1000), "x")
        return {
            "challenge": self.issue_challenge("register"),
            "rp": {"id": self.rp_id, "name": self.rp_name},
            "user": {
                "id": b64url_encode(secrets.token_bytes(16)),
                "name": f"vaulton_{timestamp}",
                "displayName": "New User",
            },
            "pubKeyCredParams": [{"alg": COSE_ES256, "type": "public-key"}],
            "timeout": CEREMONY_TIMEOUT_MS,
            "attestation": "none",
            "excludeCredentials": [],
            "authenticatorSelection": {"residentKey": "required", "userVerification": "preferred"},
        }

    def authentication_options(self) -> Dict[str, Any]:
        return {
            "challenge": self.issue_challenge("login"),
            "rpId": self.rp_id,
            "timeout": CEREMONY_TIMEOUT_MS,
            "userVerification": "preferred",
            "allowCredentials": [],
        }

    @staticmethod
    def _client_data(cred: Mapping[str, Any], expected_type: str) -> Dict[str, Any]:
        body = cred.get("response") or {}
        try:
            client_data = json.loads(b64url_decode(body.get("clientDataJSON")).decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as e:
            raise LedgerError(f"clientDataJSON is not valid: {e}")
        if not isinstance(client_data, dict) or client_data.get("type") != expected_type:
            raise LedgerError(f"clientDataJSON type must be {expected_type}")
        return client_data

    def register(self, cred: Mapping[str, Any]) -> str:
        """Verify a registration response and create the user. Returns the user id."""
        client_data = self._client_data(cred, "webauthn.create")
        self.consume_challenge(str(client_data.get("challenge", "")), "register")

        credential_id = str(cred.get("id") or "")
        if not credential_id:
            raise LedgerError("Credential ID not found in response")
        body = cred.get("response") or {}
        try:
            public_key = load_p256_public_key(b64url_decode(body.get("publicKey")))
        except (ValueError, TypeError) as e:
            raise LedgerError(f"Unsupported passkey public key: {e}")

        point = public_key.public_bytes(serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint)
        user_id = uuid.uuid4().hex
        with self._lock:
            if credential_id in self.credentials:
                raise LedgerError("Credential already registered", 409)
            self.credentials[credential_id] = user_id
            self.public_keys[credential_id] = public_key
            self.users[user_id] = {
                "userId": user_id,
                "name": None,
                "credentialId": credential_id,
                "passkeyPubkey": b64url_encode(point),
                "smartAccountId": None,
                "createdAt": _now_iso(),
            }
        logger.info(f"Registered user {user_id}")
        return user_id

    def _check_assertion(self, credential_id: str, auth_data: bytes, client_data_raw: bytes, der_signature: bytes) -> None:
        if auth_data[:32] != hashlib.sha256(self.rp_id.encode("utf-8")).digest():
            raise LedgerError("authenticatorData rpIdHash mismatch")
        public_key = self.public_keys[credential_id]
        signed = auth_data + hashlib.sha256(client_data_raw).digest()
        try:
            public_key.verify(der_signature, signed, ec.ECDSA(hashes.SHA256()))
        except InvalidSignature:
            raise LedgerError("Passkey signature verification failed", 401)

    def login(self, cred: Mapping[str, Any]) -> str:
        """Verify an authentication response. Returns the user id."""
        credential_id = str(cred.get("id") or "")
        user_id = self.credentials.get(credential_id)
        if not user_id:
            raise LedgerError("No passkey found. Please make sure you have registered a passkey first.", 404)

        client_data = self._client_data(cred, "webauthn.get")
        self.consume_challenge(str(client_data.get("challenge", "")), "login")

        body = cred.get("response") or {}
        try:
            auth_data = b64url_decode(body.get("authenticatorData"))
            client_data_raw = b64url_decode(body.get("clientDataJSON"))
            signature = b64url_decode(body.get("signature"))
        except ValueError as e:
            raise LedgerError(f"Assertion fields are not base64url: {e}")
        self._check_assertion(credential_id, auth_data, client_data_raw, signature)
        return user_id

    # Accounts

    def user_info(self, user_id: str) -> Dict[str, Any]:
        user = self.users.get(user_id)
        if user is None:
            raise LedgerError("User not found", 404)
        return {
            "userId": user["userId"],
            "name": user["name"],
            "hasPasskey": True,
            "smartAccountId": user["smartAccountId"],
            "passkeyPubkey": user["passkeyPubkey"],
            "createdAt": user["createdAt"],
        }

    def deploy(self, user_id: str, credential_id: str) -> str:
        """Create (or return) the user's smart account. Returns its address."""
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                raise LedgerError("User not found", 404)
            if user["credentialId"] != credential_id:
                raise LedgerError("keyId does not belong to this user", 403)
            if user["smartAccountId"]:
                return user["smartAccountId"]

            account_id = _contract_address()
            self.accounts[account_id] = {
                "userId": user_id,
                "credentialId": credential_id,
                "nonce": 0,
                "balance": self.initial_balance,
            }
            user["smartAccountId"] = account_id
        logger.info(f"Deployed smart account {account_id[:8]}... for user {user_id}")
        return account_id

    def _account(self, account_id: str) -> Dict[str, Any]:
        account = self.accounts.get(account_id)
        if account is None:
            raise LedgerError("Smart account not found", 404)
        return account

    def balance(self, account_id: str) -> int:
        with self._lock:
            return self._account(account_id)["balance"]

    def nonce(self, account_id: str) -> int:
        with self._lock:
            return self._account(account_id)["nonce"]

    def transfer(
        self,
        account_id: str,
        recipient: str,
        amount: int,
        signature: bytes,
        auth_data: bytes,
        client_data_raw: bytes,
    ) -> str:
        """
        Apply a passkey-authorized transfer, the way the smart account does.

        Returns:
            Transaction hash (hex)
        """
        if not is_wallet_address(recipient):
            raise LedgerError("recipient must be a valid Stellar address")
        if recipient == account_id:
            raise LedgerError("recipient must differ from the sending account")
        if amount <= 0 or amount > MAX_AMOUNT:
            raise LedgerError("amount must be a positive 128-bit integer")

        try:
            client_data = json.loads(client_data_raw.decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as e:
            raise LedgerError(f"clientDataJSON is not valid: {e}")

        with self._lock:
            account = self._account(account_id)
            expected = build_transfer_challenge(amount, account["nonce"]).wire_encoding
            if client_data.get("type") != "webauthn.get" or client_data.get("challenge") != expected:
                raise LedgerError("Challenge does not match transfer arguments and current nonce")
            if auth_data[:32] != hashlib.sha256(self.rp_id.encode("utf-8")).digest():
                raise LedgerError("authenticatorData rpIdHash mismatch")

            signed = auth_data + hashlib.sha256(client_data_raw).digest()
            if not verify_raw_signature(self.public_keys[account["credentialId"]], signed, signature):
                raise LedgerError("Passkey signature verification failed", 401)
            if account["balance"] < amount:
                raise LedgerError("Insufficient USDC balance")

            account["nonce"] += 1
            account["balance"] -= amount
            if recipient in self.accounts:
                self.accounts[recipient]["balance"] += amount

            tx_hash = hashlib.sha256(
                f"{account_id}:{recipient}:{amount}:{account['nonce']}:{signature.hex()}".encode("utf-8")
            ).hexdigest()
            self.transactions.append(
                {
                    "hash": tx_hash,
                    "userId": account_id,
                    "createdAt": _now_iso(),
                    "tokenSymbol": "USDC",
                    "amount": str(amount),
                    "from": account_id,
                    "to": recipient,
                    "direction": "out",
                }
            )
        logger.info(f"Transfer {amount} stroops {account_id[:8]}... -> {recipient[:8]}... tx={tx_hash[:12]}")
        return tx_hash

    def list_transactions(self, account_id: Optional[str] = None, address: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            items = list(self.transactions)
        if address:
            items = [tx for tx in items if address in (tx["from"], tx["to"])]
        elif account_id:
            items = [tx for tx in items if tx["userId"] == account_id]
        return sorted(items, key=lambda tx: tx["createdAt"], reverse=True)


def _ledger() -> DevLedger:
    return current_app.config["DEV_LEDGER"]


def _body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@dev_bp.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok", "message": "OK", "rpId": _ledger().rp_id})


@dev_bp.route("/register-challenge", methods=["POST"])
def register_challenge():
    options = _ledger().registration_options()
    return jsonify({"options": options, "tempUserId": f"temp_{options['user']['name']}"})


@dev_bp.route("/register-verify", methods=["POST"])
def register_verify():
    cred = _body().get("cred")
    if not isinstance(cred, dict):
        return jsonify({"error": "Credential data is required"}), 400
    user_id = _ledger().register(cred)
    return jsonify({"success": True, "verified": True, "userId": user_id})


@dev_bp.route("/login-challenge", methods=["POST"])
def login_challenge():
    return jsonify({"options": _ledger().authentication_options()})


@dev_bp.route("/login-verify", methods=["POST"])
def login_verify():
    cred = _body().get("cred")
    if not isinstance(cred, dict):
        return jsonify({"error": "Invalid credential data"}), 400
    user_id = _ledger().login(cred)
    return jsonify({"success": True, "userId": user_id})


@dev_bp.route("/user-info", methods=["GET"])
def user_info():
    user_id = request.args.get("userId", "").strip()
    if not user_id:
        return jsonify({"error": "User ID is required"}), 400
    return jsonify(_ledger().user_info(user_id))


@dev_bp.route("/deploy-child", methods=["POST"])
def deploy_child():
    body = _body()
    key_id, user_id = body.get("keyId"), body.get("userId")
    if not key_id or not user_id:
        return jsonify({"error": "keyId and userId are required"}), 400
    account_id = _ledger().deploy(str(user_id), str(key_id))
    return jsonify({"success": True, "smartAccountId": account_id})


def _child_id() -> str:
    child_id = str(_body().get("childId") or "").strip()
    if not child_id:
        raise LedgerError("childId required")
    return child_id


@dev_bp.route("/get-usdc-balance", methods=["POST"])
def get_usdc_balance():
    balance = _ledger().balance(_child_id())
    return jsonify(
        {
            "balance": str(balance),
            "balanceInStroops": str(balance),
            "balanceInUsdc": format_minor_units(balance),
        }
    )


@dev_bp.route("/get-nonce", methods=["POST"])
def get_nonce():
    return jsonify({"nonce": str(_ledger().nonce(_child_id()))})


@dev_bp.route("/transfer-usdc", methods=["POST"])
def transfer_usdc():
    body = _body()
    required = ("childId", "recipient", "amount", "signatureHex", "authData", "clientDataJSON")
    if any(body.get(name) in (None, "") for name in required):
        return jsonify({"success": False, "error": f"{', '.join(required)} required"}), 400

    try:
        signature = bytes.fromhex(str(body["signatureHex"]))
    except ValueError:
        signature = b""
    if len(signature) != 64:
        return jsonify({"success": False, "error": "signatureHex must be 64-byte hex (r||s)"}), 400

    amount_text = str(body["amount"]).strip()
    if not amount_text.isdigit():
        return jsonify({"success": False, "error": "amount must be an integer number of stroops"}), 400

    try:
        auth_data = b64url_decode(body["authData"])
        client_data_raw = b64url_decode(body["clientDataJSON"])
    except ValueError:
        return jsonify({"success": False, "error": "authData and clientDataJSON must be base64url"}), 400

    tx_hash = _ledger().transfer(
        str(body["childId"]).strip(),
        str(body["recipient"]).strip(),
        int(amount_text),
        signature,
        auth_data,
        client_data_raw,
    )
    return jsonify({"success": True, "transactionHash": tx_hash, "txHash": tx_hash, "status": "SUCCESS"})


@dev_bp.route("/transactions", methods=["GET"])
def transactions():
    try:
        limit = min(max(int(request.args.get("limit", 20)), 1), 100)
        page = max(int(request.args.get("page", 1)), 1)
    except ValueError:
        return jsonify({"error": "limit and page must be integers"}), 400

    items = _ledger().list_transactions(request.args.get("userId"), request.args.get("address"))
    start = (page - 1) * limit
    return jsonify(
        {
            "transactions": items[start : start + limit],
            "pagination": {"page": page, "limit": limit, "total": len(items), "totalPages": -(-len(items) // limit)},
        }
    )


def init_rate_limiting(app: Flask, cfg: Mapping[str, Any]) -> Optional[Limiter]:
    """Attach flask-limiter unless ``RATE_LIMIT_ENABLED`` is false."""
    global limiter

    if cfg.get("RATE_LIMIT_ENABLED") is False:
        limiter = None
        return None

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[cfg.get("RATE_LIMIT_DEFAULT") or "300/minute"],
        storage_uri="memory://",
        strategy="fixed-window",
    )
    limiter.init_app(app)
    return limiter


def register_error_handlers(app: Flask) -> None:
    """Register JSON error handlers."""

    @app.errorhandler(LedgerError)
    def ledger_error(e):
        return jsonify({"success": False, "error": e.message}), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "not_found", "message": "Resource not found"}), 404

    @app.errorhandler(429)
    def rate_limit_exceeded(e):
        return jsonify({"error": "rate_limit_exceeded", "message": str(e)}), 429

    @app.errorhandler(500)
    def internal_error(e):
        logger.error(f"Internal server error: {e}", exc_info=True)
        return jsonify({"error": "internal_error", "message": "An unexpected error occurred"}), 500


def create_dev_app(ledger: Optional[DevLedger] = None, cfg: Optional[Mapping[str, Any]] = None) -> Flask:
    """
    Create the development backend application.

    Args:
        ledger: Ledger to serve; a fresh one is built from ``cfg`` if omitted
        cfg: Configuration mapping (defaults to ``get_config()``)

    Returns:
        Configured Flask application
    """
    cfg = cfg or get_config()
    app = Flask(__name__)
    app.config["VAULTON_CONFIG"] = cfg
    app.config["DEV_LEDGER"] = ledger or DevLedger(
        rp_id=cfg.get("RP_ID", "localhost"),
        rp_name=cfg.get("RP_NAME", "Vaulton"),
        initial_balance=cfg.get("DEV_INITIAL_BALANCE_STROOPS", 1000 * 10_000_000),
    )

    init_logging(cfg)
    init_audit_logger()
    init_rate_limiting(app, cfg)

    app.register_blueprint(dev_bp)
    register_error_handlers(app)

    @app.after_request
    def add_cors_headers(response):
        origin = cfg.get("RP_ORIGIN")
        if origin:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, ngrok-skip-browser-warning"
        return response

    logger.info("Development backend ready")
    return app
