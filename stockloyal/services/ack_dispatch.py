"""
Round-trip ACK to a caller-supplied callback URL (ack_url / callback_url).

The ACK body is signed with the shared secret using the same
X-Signature: sha256=<hex> scheme as inbound deliveries. One attempt, 10s
timeout, no retry. Failures are reported in AckResult and never raised.
"""
import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from stockloyal.config import Settings
from stockloyal.schemas.webhook_payloads import AckResult, InboundEvent
from stockloyal.utils.audit_log import AuditCategory, AuditEvent, FileAuditLog
from stockloyal.utils.webhook_signatures import format_signature_header

logger = logging.getLogger(__name__)

ACK_TIMEOUT_SECONDS = 10.0
MAX_LOGGED_RESPONSE_CHARS = 2000


def build_ack_payload(event: InboundEvent, settings: Settings) -> dict[str, Any]:
    return {
        "success": True,
        "request_id": event.request_id,
        "event_type": event.event_type,
        "received_at": event.received_at_iso,
        "receiver": settings.receiver_identity,
        "environment": settings.app_env,
    }


def encode_ack_body(payload: dict[str, Any]) -> bytes:
    """Compact JSON; the signature covers exactly these bytes."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def header_safe(value: str) -> str:
    """Percent-encode header values that are not printable ASCII."""
    if value.isascii() and value.isprintable():
        return value
    return quote(value, safe="")


def _decode_response(text: str) -> Any:
    try:
        decoded = json.loads(text)
    except ValueError:
        return {"_raw": text}
    return decoded if isinstance(decoded, (dict, list)) else {"_raw": text}


async def dispatch_ack(
    event: InboundEvent,
    settings: Settings,
    audit_log: FileAuditLog,
) -> AckResult:
    """POST the signed ACK if the event carries an ack_url. Always returns an AckResult."""
    if not event.ack_url:
        return AckResult(attempted=False)

    result = AckResult(attempted=True, ack_url=event.ack_url)
    body = encode_ack_body(build_ack_payload(event, settings))

    response_text = ""
    try:
        headers = {
            "Content-Type": "application/json",
            "X-API-Key": header_safe(settings.webhook_secret),
            "X-Request-Id": header_safe(event.request_id),
            "X-Event-Type": header_safe(event.event_type),
            "X-Signature": format_signature_header(settings.webhook_secret, body),
        }
        async with httpx.AsyncClient(timeout=ACK_TIMEOUT_SECONDS) as client:
            response = await client.post(event.ack_url, content=body, headers=headers)
        result.http_status = response.status_code
        response_text = response.text
        result.response_json = _decode_response(response_text)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        result.http_status = 0
        result.curl_error = str(e) or type(e).__name__
        logger.warning(
            "ACK delivery failed: %s", result.curl_error,
            extra={"request_id": event.request_id, "event_type": event.event_type},
        )
    except Exception as e:
        result.http_status = 0
        result.curl_error = f"{type(e).__name__}: {e}"
        logger.error(
            "ACK delivery error: %s", result.curl_error,
            extra={"request_id": event.request_id, "event_type": event.event_type},
        )

    await audit_log.event(
        AuditCategory.ACK,
        AuditEvent.ACK_SENT,
        request_id=event.request_id,
        event_type=event.event_type,
        url=event.ack_url,
        status=result.http_status,
        err=result.curl_error,
        resp=response_text[:MAX_LOGGED_RESPONSE_CHARS],
    )
    return result
