# services/admin_webhook.py
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
import uuid
from typing import Any, Callable, Optional

import requests

from settings import settings

logger = logging.getLogger("tipsettle.admin_relay")

USER_AGENT = "TipSettle/1.0"
TIMEOUT_S = 10
TIMESTAMP_TOLERANCE_S = 300


def generate_signature(webhook_id: str, timestamp: str, payload: str, secret: str) -> str:
    data = f"{webhook_id}.{timestamp}.{payload}"
    return hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha256).hexdigest()


def _payload_string(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), default=str)


def send_order_notification(
    payload: dict[str, Any],
    *,
    session: Optional[requests.Session] = None,
) -> bool:
    """
    POST a signed order notification to the admin API. True only on 2xx.
    """
    base_url = (settings.ADMIN_API_BASEURL or "").strip().rstrip("/")
    if not base_url:
        logger.warning("admin relay disabled: ADMIN_API_BASEURL not set order_id=%s", payload.get("orderId"))
        return False

    webhook_id = str(uuid.uuid4())
    timestamp = str(int(time.time()))
    body = _payload_string(payload)
    headers = {
        "Content-Type": "application/json",
        "X-Webhook-Signature": generate_signature(webhook_id, timestamp, body, settings.WEBHOOK_SECRET or ""),
        "X-Webhook-Timestamp": timestamp,
        "X-Webhook-ID": webhook_id,
        "User-Agent": USER_AGENT,
    }

    http = session or requests
    try:
        resp = http.post(f"{base_url}/webhooks/orders", data=body, headers=headers, timeout=TIMEOUT_S)
    except requests.RequestException as exc:
        logger.error("admin relay failed order_id=%s error=%s", payload.get("orderId"), exc)
        return False

    if 200 <= resp.status_code < 300:
        return True

    logger.warning(
        "admin relay non-2xx order_id=%s status=%s body=%s",
        payload.get("orderId"),
        resp.status_code,
        (resp.text or "")[:300],
    )
    return False


def retry_webhook(
    fn: Callable[[], bool],
    max_retries: int = 3,
    base_delay_s: float = 1.0,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Call fn until it returns True, up to max_retries attempts.
    Waits base_delay_s * 2**(attempt-1) between attempts.
    """
    for attempt in range(1, max_retries + 1):
        try:
            if fn():
                return True
        except Exception:
            logger.exception("admin relay attempt raised attempt=%s", attempt)

        if attempt < max_retries:
            delay = base_delay_s * (2 ** (attempt - 1))
            logger.info("admin relay retry attempt=%s next_in=%.1fs", attempt, delay)
            sleep(delay)

    return False


def verify_order_notification(
    *,
    payload: str,
    signature: Optional[str],
    timestamp: Optional[str],
    webhook_id: Optional[str],
    secret: Optional[str] = None,
    now: Optional[float] = None,
) -> tuple[bool, Optional[str]]:
    secret = secret if secret is not None else settings.WEBHOOK_SECRET
    if not secret:
        return False, "WEBHOOK_SECRET_NOT_CONFIGURED"
    if not signature or not timestamp or not webhook_id:
        return False, "MISSING_SIGNATURE"

    try:
        ts = int(timestamp)
    except ValueError:
        return False, "INVALID_TIMESTAMP"

    current = time.time() if now is None else now
    if abs(current - ts) > TIMESTAMP_TOLERANCE_S:
        return False, "TIMESTAMP_OUT_OF_TOLERANCE"

    expected = generate_signature(webhook_id, timestamp, payload, secret)
    if not hmac.compare_digest(expected, signature.strip()):
        return False, "INVALID_SIGNATURE"
    return True, None
