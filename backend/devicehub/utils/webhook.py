"""Fire-and-forget webhook notifications for DeviceHub events"""
import hashlib
import hmac
import json
import threading
from typing import Any, Dict, Optional

import requests

from devicehub.config import settings
from devicehub.utils.dates import utcnow
from devicehub.utils.logger import logger


def _deliver(url: str, body: bytes, headers: Dict[str, str]) -> None:
    """Deliver webhook payload in a daemon background thread (fire-and-forget)."""
    try:
        resp = requests.post(url, data=body, headers=headers, timeout=5)
        logger.debug(f"Webhook delivered ({resp.status_code})", extra={"action": "webhook"})
    except requests.RequestException as exc:
        logger.warning("Webhook delivery failed", extra={"action": "webhook", "error": str(exc)})


def _slack_body(event_type: str, payload: Dict[str, Any]) -> bytes:
    """Format an export event as a Slack incoming-webhook message."""
    job_id = payload.get("jobId", "unknown")
    ts = utcnow().strftime("%Y-%m-%d %H:%M UTC")

    if event_type == "export.completed":
        text = (
            f"*DeviceHub: export ready* :white_check_mark:\n"
            f"Export `{job_id}` for device {payload.get('deviceId')} is available at {payload.get('fileUrl')}"
        )
        color = "#10B981"
    else:  # export.failed
        text = (
            f"*DeviceHub: export failed* :x:\n"
            f"Export `{job_id}` for device {payload.get('deviceId')} failed: {payload.get('error', '')}"
        )
        color = "#EF4444"

    return json.dumps({"attachments": [{"color": color, "text": text, "footer": f"DeviceHub | {ts}"}]}).encode()


def build_webhook_request(url: str, secret: Optional[str], event_type: str, payload: Dict[str, Any]):
    """Return ``(body, headers)`` for one notification."""
    headers: Dict[str, str] = {"Content-Type": "application/json"}
    if "hooks.slack.com" in url:
        return _slack_body(event_type, payload), headers

    body = json.dumps(
        {"event": event_type, "timestamp": utcnow().isoformat() + "Z", **payload},
        default=str,
    ).encode()
    if secret:
        sig = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        headers["X-DeviceHub-Signature"] = f"sha256={sig}"
    return body, headers


def send_webhook(event_type: str, payload: Dict[str, Any]) -> bool:
    """
    Send a webhook notification (non-blocking).

    Event types:
      - ``export.completed``: an async export finished; payload carries ``fileUrl``
      - ``export.failed``: an async export exhausted its attempts

    ``WEBHOOK_URL`` selects the destination (Slack incoming webhooks are
    detected and formatted as attachments). With ``WEBHOOK_SECRET`` set, the
    body is signed in ``X-DeviceHub-Signature: sha256=<hex>``.

    Returns False when no webhook is configured.
    """
    url = settings.WEBHOOK_URL
    if not url:
        return False

    body, headers = build_webhook_request(url, settings.WEBHOOK_SECRET, event_type, payload)
    threading.Thread(target=_deliver, args=(url, body, headers), daemon=True).start()
    return True
