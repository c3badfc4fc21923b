"""
Inbound StockLoyal webhook receiver.

Stages (in order, each may end the request):
1. Rate limiting (per source IP, fixed one-minute window)        -> 429
2. Shared-secret auth (X-API-Key or Authorization: Bearer)       -> 401
3. Signature check (X-Signature: sha256=<hex> over the raw body) -> 401
4. Dedupe by request id                                          -> 200 duplicate
5. Audit trail (webhook_logs row + receive log file), best-effort
6. Optional signed ACK to ack_url / callback_url, best-effort    -> 200 processed
"""
import logging
from typing import Any, Callable, Mapping, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from stockloyal.config import Settings, get_settings
from stockloyal.database import session_factory_for
from stockloyal.schemas.api_responses import DuplicateResponse, ProcessedResponse, SignatureSummary
from stockloyal.schemas.webhook_payloads import InboundEvent, SignatureReason
from stockloyal.services.ack_dispatch import dispatch_ack
from stockloyal.services.webhook_persistence import record_webhook_event
from stockloyal.utils.audit_log import AuditCategory, AuditEvent, FileAuditLog
from stockloyal.utils.auth import is_authorized, mask_secret
from stockloyal.utils.dedup import DedupeStore, get_dedupe_store, is_duplicate
from stockloyal.utils.logging import webhook_log_context
from stockloyal.utils.rate_limiter import (
    WINDOW_SECONDS,
    RateCounterStore,
    check_rate_limit,
    get_rate_counter_store,
)
from stockloyal.utils.request_parsing import header_value, parse_request
from stockloyal.utils.webhook_signatures import signature_required, verify_signature

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])

PipelineResult = tuple[int, dict[str, Any], dict[str, str]]


async def _enforce_rate_limit(
    event: InboundEvent,
    settings: Settings,
    store: RateCounterStore,
    audit_log: FileAuditLog,
) -> Optional[PipelineResult]:
    """Count the request; return a 429 result if the IP is over its ceiling."""
    allowed, retry_after = await check_rate_limit(event.source_ip, settings.webhook_rate_limit, store)
    if allowed:
        return None

    await audit_log.event(
        AuditCategory.RECEIVE,
        AuditEvent.RATE_LIMITED,
        request_id=event.request_id,
        event_type=event.event_type,
        ip=event.source_ip,
        limit=settings.webhook_rate_limit,
    )
    body = {
        "success": False,
        "error": "Rate limit exceeded",
        "limit": settings.webhook_rate_limit,
        "window": f"{WINDOW_SECONDS}s",
    }
    return 429, body, {"Retry-After": str(retry_after or WINDOW_SECONDS)}


async def _enforce_auth(
    headers: Mapping[str, str],
    event: InboundEvent,
    settings: Settings,
    audit_log: FileAuditLog,
) -> Optional[PipelineResult]:
    if is_authorized(headers, settings.webhook_secret):
        return None

    logger.warning("Unauthorized webhook")
    await audit_log.event(
        AuditCategory.RECEIVE,
        AuditEvent.UNAUTHORIZED,
        request_id=event.request_id,
        event_type=event.event_type,
        ip=event.source_ip,
        origin=event.origin,
        api_key=mask_secret(header_value(headers, "X-API-Key")),
    )
    return 401, {"success": False, "error": "Unauthorized"}, {}


async def process_webhook(
    headers: Mapping[str, str],
    event: InboundEvent,
    settings: Settings,
    dedupe_store: Optional[DedupeStore] = None,
    rate_store: Optional[RateCounterStore] = None,
    audit_log: Optional[FileAuditLog] = None,
    session_factory: Optional[Callable[[], AsyncSession]] = None,
) -> PipelineResult:
    """
    Run one delivery through the receiver pipeline.
    Returns (status_code, json_body, extra_response_headers).
    """
    dedupe_store = dedupe_store or get_dedupe_store(settings)
    rate_store = rate_store or get_rate_counter_store(settings)
    audit_log = audit_log or FileAuditLog(settings.webhook_log_dir)

    with webhook_log_context(
        request_id=event.request_id,
        event_type=event.event_type,
        source_ip=event.source_ip,
    ):
        return await _run_pipeline(
            headers, event, settings, dedupe_store, rate_store, audit_log, session_factory,
        )


async def _run_pipeline(
    headers: Mapping[str, str],
    event: InboundEvent,
    settings: Settings,
    dedupe_store: DedupeStore,
    rate_store: RateCounterStore,
    audit_log: FileAuditLog,
    session_factory: Optional[Callable[[], AsyncSession]],
) -> PipelineResult:
    # Rate limit
    rejected = await _enforce_rate_limit(event, settings, rate_store, audit_log)
    if rejected:
        return rejected

    # Auth
    rejected = await _enforce_auth(headers, event, settings, audit_log)
    if rejected:
        return rejected

    # Signature: invalid is always fatal, absent only in production
    sig_check = verify_signature(headers, event.raw_body, settings.webhook_secret)
    required = signature_required(settings.app_env)

    if not sig_check.present and required:
        logger.warning("Unsigned webhook rejected in production")
        await audit_log.event(
            AuditCategory.RECEIVE,
            AuditEvent.MISSING_SIGNATURE,
            request_id=event.request_id,
            event_type=event.event_type,
            ip=event.source_ip,
            environment=settings.app_env,
        )
        body = {
            "success": False,
            "error": "Signature required",
            "reason": SignatureReason.ABSENT,
            "environment": settings.app_env,
        }
        return 401, body, {}

    if sig_check.present and not sig_check.verified:
        logger.warning("Invalid webhook signature: %s", sig_check.reason)
        await audit_log.event(
            AuditCategory.RECEIVE,
            AuditEvent.BAD_SIGNATURE,
            request_id=event.request_id,
            event_type=event.event_type,
            reason=sig_check.reason,
            ip=event.source_ip,
        )
        return 401, {"success": False, "error": "Invalid signature", "reason": sig_check.reason}, {}

    # Idempotency - marker is committed before anything below runs
    if await is_duplicate(event.request_id, dedupe_store):
        await audit_log.event(
            AuditCategory.RECEIVE,
            AuditEvent.DUPLICATE,
            request_id=event.request_id,
            event_type=event.event_type,
        )
        body = DuplicateResponse(
            request_id=event.request_id,
            event_type=event.event_type,
            received_at=event.received_at_iso,
        )
        return 200, body.model_dump(), {}

    # Audit trail (DB and file are independent, both best-effort)
    db_result = await record_webhook_event(event, sig_check.verified, session_factory)
    await audit_log.event(
        AuditCategory.RECEIVE,
        AuditEvent.RECEIVED,
        request_id=event.request_id,
        event_type=event.event_type,
        sig="verified" if sig_check.verified else SignatureReason.ABSENT,
        origin=event.origin,
        ip=event.source_ip,
        db="ok" if db_result.ok else "failed",
        payload=event.body_text or "{}",
    )
    logger.info("Webhook received")

    ack_result = await dispatch_ack(event, settings, audit_log)

    body = ProcessedResponse(
        request_id=event.request_id,
        event_type=event.event_type,
        received_at=event.received_at_iso,
        environment=settings.app_env,
        signature=SignatureSummary(
            present=sig_check.present,
            verified=sig_check.verified,
            reason=sig_check.reason,
            required=required,
        ),
        database_logged=db_result.ok,
        ack=ack_result,
    )
    return 200, body.model_dump(), {}


@router.post("/stockloyal-receiver")
async def stockloyal_receiver(
    request: Request,
    settings: Settings = Depends(get_settings),
):
    """Inbound StockLoyal webhook. Always answers JSON."""
    headers, event = await parse_request(request)
    status_code, body, extra_headers = await process_webhook(
        headers, event, settings, session_factory=session_factory_for(settings),
    )
    return JSONResponse(status_code=status_code, content=body, headers=extra_headers or None)
