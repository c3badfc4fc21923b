"""
Admin endpoints over the webhook_logs audit table and the receiver settings.

- GET  /api/webhook/stats  - last-24h totals, per-event breakdown, recent unverified
- GET  /api/webhook/logs   - filtered, paginated audit rows (payloads omitted)
- GET  /api/webhook/config - current receiver settings, API key masked
- POST /api/webhook/test   - send a signed test.connection event to WEBHOOK_URL

Every route requires the shared webhook secret (X-API-Key or Bearer).
Database errors degrade to an empty result with an "error" field rather than a 5xx,
so the admin UI keeps rendering.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy import case, distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from stockloyal.config import Settings, get_settings
from stockloyal.database import get_optional_db
from stockloyal.models.webhook_log import WebhookLog
from stockloyal.schemas.api_responses import (
    EventBreakdown,
    RecentError,
    WebhookConfig,
    WebhookConfigResponse,
    WebhookLogEntry,
    WebhookLogListResponse,
    WebhookStats,
    WebhookStatsResponse,
)
from stockloyal.services.signed_delivery import (
    CONNECTION_TEST_TIMEOUT_SECONDS,
    build_connection_test,
    generate_test_request_id,
    send_signed_event,
)
from stockloyal.utils.auth import is_authorized, mask_secret
from stockloyal.utils.request_parsing import normalize_headers
from stockloyal.utils.webhook_signatures import signature_required

logger = logging.getLogger(__name__)


async def require_admin_key(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> None:
    """Dependency that requires the shared webhook secret."""
    if not is_authorized(normalize_headers(request.headers), settings.webhook_secret):
        logger.warning("Unauthorized admin request: %s", request.url.path)
        raise HTTPException(status_code=401, detail="Unauthorized")


router = APIRouter(
    prefix="/api/webhook",
    tags=["webhook-admin"],
    dependencies=[Depends(require_admin_key)],
)

NOT_CONFIGURED = (
    "Webhook not configured. Set WEBHOOK_URL and STOCKLOYAL_WEBHOOK_SECRET environment variables."
)

STATS_WINDOW_HOURS = 24
TOP_EVENT_TYPES = 10
RECENT_ERRORS = 10
DEFAULT_PER_PAGE = 50
MIN_PER_PAGE = 10
MAX_PER_PAGE = 100

_verified_count = func.coalesce(
    func.sum(case((WebhookLog.signature_verified.is_(True), 1), else_=0)), 0
)


@router.get("/stats", response_model=WebhookStatsResponse, response_model_exclude_none=True)
async def webhook_stats(db: Optional[AsyncSession] = Depends(get_optional_db)):
    """Webhook statistics for the last 24 hours."""
    if db is None:
        return WebhookStatsResponse(stats=WebhookStats(), error="database not configured")

    since = datetime.now(timezone.utc) - timedelta(hours=STATS_WINDOW_HOURS)
    try:
        totals = (await db.execute(
            select(
                func.count(WebhookLog.id),
                func.count(distinct(WebhookLog.event_type)),
                func.count(distinct(WebhookLog.source_ip)),
                _verified_count,
            ).where(WebhookLog.received_at >= since)
        )).one()

        count_col = func.count(WebhookLog.id).label("count")
        breakdown_rows = (await db.execute(
            select(WebhookLog.event_type, count_col, _verified_count)
            .where(WebhookLog.received_at >= since)
            .group_by(WebhookLog.event_type)
            .order_by(count_col.desc())
            .limit(TOP_EVENT_TYPES)
        )).all()

        error_rows = (await db.execute(
            select(WebhookLog)
            .where(
                WebhookLog.received_at >= since,
                WebhookLog.signature_verified.is_(False),
            )
            .order_by(WebhookLog.received_at.desc())
            .limit(RECENT_ERRORS)
        )).scalars().all()
    except SQLAlchemyError as e:
        logger.error("Webhook stats query failed: %s", str(e))
        return WebhookStatsResponse(stats=WebhookStats(), error="Database error")

    stats = WebhookStats(
        total24h=int(totals[0] or 0),
        uniqueEvents=int(totals[1] or 0),
        uniqueIps=int(totals[2] or 0),
        verified=int(totals[3] or 0),
        eventBreakdown=[
            EventBreakdown(event_type=row[0], count=int(row[1]), verified=int(row[2] or 0))
            for row in breakdown_rows
        ],
        recentErrors=[
            RecentError(
                request_id=log.request_id,
                event_type=log.event_type,
                source_ip=log.source_ip,
                received_at=log.received_at,
            )
            for log in error_rows
        ],
    )
    return WebhookStatsResponse(stats=stats)


@router.get("/logs", response_model=WebhookLogListResponse, response_model_exclude_none=True)
async def webhook_logs(
    event_type: Optional[str] = Query(None, alias="eventType"),
    source_ip: Optional[str] = Query(None, alias="sourceIp"),
    day: Optional[date] = Query(None, alias="date"),
    verified: Optional[int] = Query(None, ge=0, le=1),
    page: int = 1,
    per_page: int = Query(DEFAULT_PER_PAGE, alias="perPage"),
    db: Optional[AsyncSession] = Depends(get_optional_db),
):
    """Paginated webhook audit rows, newest first."""
    page = max(1, page)
    per_page = min(MAX_PER_PAGE, max(MIN_PER_PAGE, per_page))

    if db is None:
        return WebhookLogListResponse(
            logs=[], total=0, page=page, perPage=per_page, error="database not configured",
        )

    filters = []
    if event_type:
        filters.append(WebhookLog.event_type == event_type)
    if source_ip:
        filters.append(WebhookLog.source_ip == source_ip)
    if day is not None:
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        filters.append(WebhookLog.received_at >= start)
        filters.append(WebhookLog.received_at < start + timedelta(days=1))
    if verified is not None:
        filters.append(WebhookLog.signature_verified.is_(bool(verified)))

    try:
        total = (await db.execute(
            select(func.count(WebhookLog.id)).where(*filters)
        )).scalar_one()
        rows = (await db.execute(
            select(WebhookLog)
            .where(*filters)
            .order_by(WebhookLog.received_at.desc(), WebhookLog.id.desc())
            .limit(per_page)
            .offset((page - 1) * per_page)
        )).scalars().all()
    except SQLAlchemyError as e:
        logger.error("Webhook logs query failed: %s", str(e))
        return WebhookLogListResponse(
            logs=[], total=0, page=page, perPage=per_page, error="Database error",
        )

    return WebhookLogListResponse(
        logs=[
            WebhookLogEntry(
                id=log.id,
                request_id=log.request_id,
                event_type=log.event_type,
                signature_verified=log.signature_verified,
                source_ip=log.source_ip,
                origin=log.origin,
                received_at=log.received_at,
            )
            for log in rows
        ],
        total=int(total),
        page=page,
        perPage=per_page,
    )


@router.get("/config", response_model=WebhookConfigResponse)
async def webhook_config(settings: Settings = Depends(get_settings)):
    """Read-only view of the receiver settings."""
    return WebhookConfigResponse(
        config=WebhookConfig(
            webhookUrl=settings.webhook_url,
            apiKey=mask_secret(settings.webhook_secret),
            environment=settings.app_env,
            requireSignature=signature_required(settings.app_env),
            rateLimit=settings.webhook_rate_limit,
        )
    )


@router.post("/test")
async def webhook_test(settings: Settings = Depends(get_settings)):
    """Send a signed test.connection event to the configured receiver."""
    if not settings.webhook_url or not settings.webhook_secret:
        return JSONResponse(status_code=400, content={"success": False, "error": NOT_CONFIGURED})

    request_id = generate_test_request_id()
    try:
        resp = await send_signed_event(
            settings.webhook_url,
            settings.webhook_secret,
            build_connection_test(request_id),
            timeout=CONNECTION_TEST_TIMEOUT_SECONDS,
        )
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        error = str(e) or type(e).__name__
        logger.warning("Test webhook failed: %s", error)
        return JSONResponse(
            status_code=502,
            content={"success": False, "error": f"HTTP 0: {error}", "http_code": 0, "request_id": request_id},
        )

    try:
        response = resp.json()
    except ValueError:
        response = resp.text

    if resp.status_code != 200:
        return JSONResponse(
            status_code=502,
            content={
                "success": False,
                "error": f"HTTP {resp.status_code}: {resp.text}",
                "http_code": resp.status_code,
                "request_id": request_id,
            },
        )
    return {"success": True, "request_id": request_id, "response": response}
