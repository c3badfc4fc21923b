"""
Relational audit sink for processed webhooks (webhook_logs table).

Best-effort: a failed insert is logged and reported as OperationResult.warning,
never raised. The inbound response does not depend on it.
"""
import logging
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from stockloyal.models.webhook_log import WebhookLog
from stockloyal.schemas.webhook_payloads import InboundEvent, OperationResult

logger = logging.getLogger(__name__)


async def record_webhook_event(
    event: InboundEvent,
    signature_verified: bool,
    session_factory: Optional[Callable[[], AsyncSession]] = None,
) -> OperationResult:
    """
    Insert the audit row for event. Returns ok=False with a warning on any failure.
    A None session_factory means no database is configured.
    """
    if session_factory is None:
        return OperationResult(ok=False, warning="database not configured")

    try:
        async with session_factory() as db:
            db.add(WebhookLog(
                request_id=event.request_id,
                event_type=event.event_type,
                payload=event.body_text,
                signature_verified=signature_verified,
                source_ip=event.source_ip,
                origin=event.origin or None,
                received_at=event.received_at,
            ))
            await db.commit()
        return OperationResult(ok=True)
    except Exception as e:
        logger.warning(
            "Webhook audit insert failed: %s", str(e),
            extra={"request_id": event.request_id, "event_type": event.event_type},
        )
        return OperationResult(ok=False, warning=f"database insert failed: {type(e).__name__}")
