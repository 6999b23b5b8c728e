import hashlib
import hmac
import logging
import uuid
from typing import Any, Dict, Mapping
from urllib.parse import quote, urlencode

import requests

from core.config import settings

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """The gateway refused or failed to open a payment session."""


def compute_signature(payload: Mapping[str, Any], secret: str | None = None) -> str:
    """HMAC-SHA256 over the key-sorted, RFC 3986 encoded payload (``hashcode`` excluded)."""
    secret = settings.PAIEMENTPRO_SECRET if secret is None else secret
    if not secret:
        raise GatewayError("PaiementPro secret is not configured (PMP_SECRET)")
    items = sorted((k, "" if v is None else str(v)) for k, v in payload.items() if k != "hashcode")
    base = urlencode(items, quote_via=quote)
    return hmac.new(secret.encode(), base.encode(), hashlib.sha256).hexdigest()


def verify_signature(payload: Mapping[str, Any], secret: str | None = None) -> bool:
    received = str(payload.get("hashcode") or "")
    if not received:
        return False
    return hmac.compare_digest(compute_signature(payload, secret), received)


def signing_enabled() -> bool:
    return bool(settings.PAIEMENTPRO_SECRET)


def unsigned_verdicts_allowed() -> bool:
    """Without a secret, return-URL verdicts are only trusted in debug and test runs."""
    return signing_enabled() or settings.DEBUG or settings.TESTING


def check_gateway_config() -> bool:
    if unsigned_verdicts_allowed():
        return True
    logger.warning(
        "PMP_SECRET is not set: gateway notifications cannot be verified and "
        "return-URL verdicts will be ignored until it is configured"
    )
    return False


def initialize_transaction(
    reference: str,
    amount: int,
    channel: str | None = None,
    customer: Dict[str, Any] | None = None,
    description: str | None = None,
) -> Dict[str, Any]:
    """Open a gateway session. Returns the auto-submit form the client posts to the gateway."""
    customer = customer or {}
    payload = {
        "merchantId": settings.PAIEMENTPRO_MERCHANT_ID,
        "amount": int(amount),
        "currency": settings.PAIEMENTPRO_CURRENCY_CODE,
        "referenceNumber": reference,
        "channel": channel or "",
        "customerEmail": customer.get("email") or "",
        "customerFirstName": customer.get("first_name") or "",
        "customerLastname": customer.get("last_name") or "",
        "customerPhoneNumber": customer.get("phone") or "",
        "description": description or reference,
        "notificationURL": settings.PAIEMENTPRO_NOTIFICATION_URL,
        "returnURL": settings.PAIEMENTPRO_RETURN_URL,
        "returnContext": str(uuid.uuid4()),
    }
    if signing_enabled():
        payload["hashcode"] = compute_signature(payload)

    try:
        resp = requests.post(settings.PAIEMENTPRO_INIT_URL, json=payload, timeout=20)
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as exc:
        raise GatewayError(f"PaiementPro init failed: {exc}") from exc

    session_id = data.get("Sessionid") or data.get("sessionId") or data.get("SessionID")
    if str(data.get("Code", "0")) != "0" or not session_id:
        raise GatewayError(data.get("Description") or data.get("message") or "PaiementPro refused the transaction")

    return {
        "action": settings.PAIEMENTPRO_PROCESSING_URL,
        "method": "GET",
        "fields": {"sessionId": session_id, "referenceNumber": reference},
        "session_id": session_id,
        "raw": data,
    }
