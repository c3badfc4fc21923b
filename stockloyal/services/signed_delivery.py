"""
Signed test deliveries to a StockLoyal receiver.
Used by POST /api/webhook/test and scripts/send_test_webhook.py.
"""
import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Any

import httpx

from stockloyal.utils.webhook_signatures import format_signature_header

logger = logging.getLogger(__name__)

CONNECTION_TEST_EVENT = "test.connection"
CONNECTION_TEST_TIMEOUT_SECONDS = 10


def generate_test_request_id() -> str:
    return f"test_{secrets.token_hex(8)}"


def build_connection_test(request_id: str) -> dict[str, Any]:
    return {
        "event_type": CONNECTION_TEST_EVENT,
        "request_id": request_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "test": True,
        "source": "webhook_admin",
    }


async def send_signed_event(
    url: str,
    secret: str,
    payload: dict[str, Any],
    timeout: float = 30,
    sign: bool = True,
    bearer: bool = False,
) -> httpx.Response:
    """POST one event. The signature covers the exact bytes sent."""
    body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "X-Request-Id": str(payload.get("request_id", "")),
        "X-Event-Type": str(payload.get("event_type", "")),
    }
    if bearer:
        headers["Authorization"] = f"Bearer {secret}"
    else:
        headers["X-API-Key"] = secret
    if sign:
        headers["X-Signature"] = format_signature_header(secret, body)

    async with httpx.AsyncClient(timeout=timeout) as client:
        resp = await client.post(url, content=body, headers=headers)
    logger.info("Test webhook to %s answered %s", url, resp.status_code)
    return resp
