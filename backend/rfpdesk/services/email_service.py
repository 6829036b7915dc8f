"""
Email provider (Resend) access: outbound RFP emails, fetching received messages, webhook signature checks.
Without RESEND_API_KEY outbound mail is only logged, so the workflow can run locally.
"""
import base64
import hashlib
import hmac
import json
import logging
import os
import time
import urllib.error
import urllib.request
from typing import Any

logger = logging.getLogger(__name__)

_DEFAULT_API_URL = "https://api.resend.com"
_DEFAULT_FROM = "Procurement <procurement@example.com>"
_HTTP_TIMEOUT_SEC = 15
# Reject webhook deliveries whose timestamp is further than this from now (replay protection).
WEBHOOK_TOLERANCE_SEC = 5 * 60


class EmailDeliveryError(Exception):
    """Provider rejected the message or could not be reached."""


class WebhookVerificationError(Exception):
    """Webhook signature headers are missing, stale, or do not match."""


def email_provider() -> str:
    return "resend" if os.getenv("RESEND_API_KEY", "").strip() else "log"


def _api_url(path: str) -> str:
    base = os.getenv("RESEND_API_URL", _DEFAULT_API_URL).strip().rstrip("/") or _DEFAULT_API_URL
    return f"{base}{path}"


def _request(method: str, path: str, body: dict | None = None) -> dict[str, Any]:
    api_key = os.getenv("RESEND_API_KEY", "").strip()
    data = json.dumps(body).encode("utf-8") if body is not None else None
    headers = {"Authorization": f"Bearer {api_key}", "User-Agent": "RFPDesk/1.0"}
    if data is not None:
        headers["Content-Type"] = "application/json"
    req = urllib.request.Request(_api_url(path), data=data, method=method, headers=headers)
    with urllib.request.urlopen(req, timeout=_HTTP_TIMEOUT_SEC) as resp:
        raw = resp.read().decode("utf-8")
    return json.loads(raw) if raw else {}


def send_email(to: str, subject: str, body: str) -> dict[str, Any]:
    """
    Send a plain-text email. Returns {"status": "sent", "id": <provider id>} or {"status": "logged", "id": None}.
    Raises EmailDeliveryError when the provider call fails.
    """
    if email_provider() == "log":
        logger.info("Email (not sent, no RESEND_API_KEY): to=%s subject=%s body_len=%s", to, subject, len(body or ""))
        return {"status": "logged", "id": None}
    payload = {
        "from": os.getenv("EMAIL_FROM", _DEFAULT_FROM),
        "to": [to],
        "subject": subject,
        "text": body,
    }
    try:
        out = _request("POST", "/emails", payload)
    except urllib.error.HTTPError as e:
        detail = e.read().decode("utf-8", errors="replace") if e.fp else ""
        raise EmailDeliveryError(f"Provider returned HTTP {e.code}: {detail[:300]}") from e
    except (urllib.error.URLError, OSError, ValueError) as e:
        raise EmailDeliveryError(f"Could not reach email provider: {e}") from e
    logger.info("Email sent: to=%s id=%s", to, out.get("id"))
    return {"status": "sent", "id": out.get("id")}


def fetch_received_email(email_id: str) -> dict[str, Any] | None:
    """Fetch a received message (text/html/subject) from the provider; None if unavailable."""
    if not email_id or email_provider() == "log":
        return None
    try:
        out = _request("GET", f"/emails/receiving/{email_id}")
    except urllib.error.HTTPError as e:
        logger.warning("Receiving API returned HTTP %s for email_id=%s", e.code, email_id)
        return None
    except (urllib.error.URLError, OSError, ValueError) as e:
        logger.warning("Receiving API unreachable for email_id=%s: %s", email_id, e)
        return None
    # The receiving API answers either with the message or with {"data": message}
    data = out.get("data") if isinstance(out.get("data"), dict) else out
    return data or None


def _decode_secret(secret: str) -> bytes:
    secret = secret.strip()
    if secret.startswith("whsec_"):
        secret = secret[len("whsec_"):]
    try:
        return base64.b64decode(secret)
    except ValueError as e:
        raise WebhookVerificationError("Webhook secret is not valid base64") from e


def sign_webhook(secret: str, msg_id: str, timestamp: str, payload: bytes) -> str:
    """Svix-style v1 signature (base64 HMAC-SHA256 of "id.timestamp.body")."""
    signed = f"{msg_id}.{timestamp}.".encode("utf-8") + payload
    digest = hmac.new(_decode_secret(secret), signed, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(
    secret: str,
    payload: bytes,
    msg_id: str | None,
    timestamp: str | None,
    signature_header: str | None,
    now: float | None = None,
) -> None:
    """Raise WebhookVerificationError unless one of the "v1,<sig>" entries matches."""
    if not (msg_id and timestamp and signature_header):
        raise WebhookVerificationError("Missing webhook signature headers")
    try:
        ts = int(timestamp)
    except ValueError as e:
        raise WebhookVerificationError("Invalid webhook timestamp") from e
    now = time.time() if now is None else now
    if abs(now - ts) > WEBHOOK_TOLERANCE_SEC:
        raise WebhookVerificationError("Webhook timestamp outside tolerance")
    expected = sign_webhook(secret, msg_id, timestamp, payload)
    for entry in signature_header.split():
        version, _, sig = entry.partition(",")
        if version == "v1" and hmac.compare_digest(sig, expected):
            return
    raise WebhookVerificationError("No matching webhook signature")
