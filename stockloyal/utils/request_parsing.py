"""
Inbound request parsing - raw body, lowercased headers, defensive JSON decode.

Malformed bodies never raise here: they decode to an empty payload and fall
through to the validation stages.
"""
import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from stockloyal.schemas.webhook_payloads import InboundEvent

logger = logging.getLogger(__name__)


def normalize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Lowercase header names so lookups are case-insensitive."""
    return {str(k).lower(): str(v) for k, v in headers.items()}


def header_value(headers: Mapping[str, str], name: str) -> str:
    """Case-insensitive header lookup on a normalized header map. Missing -> ''."""
    return headers.get(name.lower(), "")


def safe_json_decode(raw: bytes) -> dict[str, Any]:
    """Decode a JSON object body. Anything that is not a JSON object yields {}."""
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        logger.debug("Inbound body is not valid JSON (%d bytes)", len(raw))
        return {}
    return data if isinstance(data, dict) else {}


def generate_request_id() -> str:
    """Fallback idempotency key: req_ + 16 hex chars."""
    return "req_" + secrets.token_hex(8)


def _first_str(payload: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        val = payload.get(key)
        if val is None or isinstance(val, (dict, list)):
            continue
        text = str(val).strip()
        if text:
            return text
    return ""


def resolve_request_id(headers: Mapping[str, str], payload: Mapping[str, Any]) -> str:
    """X-Request-Id header, then body request_id / event_id, else generated."""
    return (
        header_value(headers, "X-Request-Id").strip()
        or _first_str(payload, "request_id", "event_id")
        or generate_request_id()
    )


def resolve_event_type(headers: Mapping[str, str], payload: Mapping[str, Any]) -> str:
    """X-Event-Type header, then body event_type / event, else 'unknown'."""
    return (
        header_value(headers, "X-Event-Type").strip()
        or _first_str(payload, "event_type", "event")
        or "unknown"
    )


def resolve_ack_url(payload: Mapping[str, Any]) -> Optional[str]:
    """ack_url, falling back to the legacy callback_url. Only string values count."""
    for key in ("ack_url", "callback_url"):
        val = payload.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return None


def build_inbound_event(
    headers: Mapping[str, str],
    raw_body: bytes,
    source_ip: str,
    received_at: Optional[datetime] = None,
) -> tuple[dict[str, str], InboundEvent]:
    """
    Produce the normalized header map and the InboundEvent for one request.
    received_at is fixed here and reused by every later stage.
    """
    lowered = normalize_headers(headers)
    payload = safe_json_decode(raw_body)
    when = received_at or datetime.now(timezone.utc).replace(microsecond=0)

    event = InboundEvent(
        request_id=resolve_request_id(lowered, payload),
        event_type=resolve_event_type(lowered, payload),
        raw_body=raw_body,
        payload=payload,
        source_ip=source_ip or "unknown",
        origin=header_value(lowered, "Origin"),
        received_at=when,
        ack_url=resolve_ack_url(payload),
    )
    return lowered, event


async def parse_request(request) -> tuple[dict[str, str], InboundEvent]:
    """Read a Starlette request into (headers, InboundEvent)."""
    raw_body = await request.body()
    source_ip = request.client.host if request.client else "unknown"
    return build_inbound_event(request.headers, raw_body, source_ip)
