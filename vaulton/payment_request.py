"""
Payment request parsing and link building.

Turns whatever a user scanned or pasted (a ``stellar:pay`` URI, a wallet send
link, a JSON blob or a bare address) into a recipient and amount that can be
handed to ``PasskeyWallet.transfer``.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import parse_qs, urlencode, urlsplit

STELLAR_ADDRESS_RE = re.compile(r"\b[GC][A-Z2-7]{20,}\b")
EVM_ADDRESS_RE = re.compile(r"\b0x[a-fA-F0-9]{40}\b")
_AMOUNT_RE = re.compile(r"^\d+(?:\.\d+)?$")
_INLINE_AMOUNT_RE = re.compile(r"(?:amount|value)\s*[:=]\s*([0-9]+(?:\.[0-9]+)?)", re.IGNORECASE)


@dataclass(frozen=True)
class PaymentRequest:
    recipient: str
    amount: str
    source: str
    raw: str


def sanitize_amount(value: Any) -> str:
    """Return ``value`` as plain decimal text, or "" if it is not one."""
    if value is None:
        return ""
    text = str(value).strip()
    if not text or not _AMOUNT_RE.match(text):
        return ""
    return text


def _first_non_empty(*values: Any) -> str:
    for value in values:
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def extract_address(text: str) -> str:
    match = STELLAR_ADDRESS_RE.search(text) or EVM_ADDRESS_RE.search(text)
    return match.group(0) if match else ""


def _param(params: dict, name: str) -> Optional[str]:
    values = params.get(name)
    return values[0] if values else None


def _parse_json_like(raw: str) -> Optional[PaymentRequest]:
    if not raw.startswith("{"):
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None
    recipient = _first_non_empty(parsed.get("recipient"), parsed.get("destination"), parsed.get("address"))
    amount = sanitize_amount(parsed.get("amount"))
    if not recipient and not amount:
        return None
    return PaymentRequest(recipient=recipient, amount=amount, source="json", raw=raw)


def _parse_url_like(raw: str) -> Optional[PaymentRequest]:
    parts = urlsplit(raw)
    if not parts.scheme:
        return None
    scheme = parts.scheme.lower()
    if scheme in ("http", "https") and not parts.netloc:
        return None

    params = parse_qs(parts.query)
    path = (parts.path or "").lower()
    recipient = _first_non_empty(
        _param(params, "recipient"),
        _param(params, "destination"),
        _param(params, "address"),
        _param(params, "to") if "/send" in path else None,
    ) or extract_address(raw)
    amount = sanitize_amount(
        _first_non_empty(
            _param(params, "amount"),
            _param(params, "value"),
            _param(params, "uint256"),
            _param(params, "requestAmount"),
        )
    )
    source = "stellar-uri" if scheme in ("stellar", "web+stellar") else f"{scheme}:"
    return PaymentRequest(recipient=recipient, amount=amount, source=source, raw=raw)


def parse_payment_request(raw_value: Any) -> PaymentRequest:
    """
    Parse scanned or pasted payment data.

    Tried in order: JSON object, URL/URI with query parameters, then a bare
    address with an optional ``amount=`` / ``value:`` fragment.

    The returned amount is decimal text (or ""); convert it with
    ``vaulton.codecs.to_minor_units`` before use.
    """
    raw = str(raw_value or "").strip()
    if not raw:
        return PaymentRequest(recipient="", amount="", source="empty", raw="")

    parsed = _parse_json_like(raw)
    if parsed is not None:
        return parsed

    parsed = _parse_url_like(raw)
    if parsed is not None and (parsed.recipient or parsed.amount):
        return parsed

    recipient = extract_address(raw)
    match = _INLINE_AMOUNT_RE.search(raw)
    amount = sanitize_amount(match.group(1) if match else "")
    return PaymentRequest(recipient=recipient, amount=amount, source="address" if recipient else "unknown", raw=raw)


def build_stellar_pay_uri(recipient: str, amount: Any = None) -> str:
    """SEP-0007 style ``stellar:pay?destination=...&amount=...``."""
    if not recipient:
        return ""
    params = {"destination": recipient}
    normalized = sanitize_amount(amount)
    if normalized:
        params["amount"] = normalized
    return f"stellar:pay?{urlencode(params)}"


def build_send_link(origin: str, recipient: str, amount: Any = None) -> str:
    """Dashboard deep link that pre-fills the send form."""
    if not origin or not recipient:
        return ""
    params = {"tab": "send", "recipient": recipient}
    normalized = sanitize_amount(amount)
    if normalized:
        params["amount"] = normalized
    params["source"] = "vaulton_request"
    return f"{origin.rstrip('/')}/dashboard?{urlencode(params)}"


def short_address(address: Any, start: int = 8, end: int = 8) -> str:
    value = str(address or "")
    if not value:
        return "-"
    if len(value) <= start + end + 3:
        return value
    return f"{value[:start]}...{value[-end:]}"
