"""
Retention sweeper worker - deletes expired audit logs, dedupe markers and
stale rate counters from the webhook log directory.
Runs every RETENTION_SWEEP_INTERVAL_SECONDS (default 1 hour).
"""
import asyncio
import logging

from stockloyal.config import Settings, get_settings
from stockloyal.utils.audit_log import sweep_expired

logger = logging.getLogger(__name__)

COUNTER_MAX_AGE_SECONDS = 3600


def sweep_cycle(settings: Settings) -> dict[str, int]:
    """Run one sweep against the configured log root."""
    removed = sweep_expired(
        settings.webhook_log_dir,
        log_retention_days=settings.log_retention_days,
        dedupe_retention_days=settings.dedupe_retention_days,
        counter_max_age_seconds=COUNTER_MAX_AGE_SECONDS,
    )
    total = sum(removed.values())
    if total:
        logger.info(
            "Retention sweep removed %d files (receive=%d ack=%d dedupe=%d ratelimit=%d)",
            total, removed["receive"], removed["ack"], removed["dedupe"], removed["ratelimit"],
        )
    return removed


async def run_retention_sweeper(settings: Settings | None = None):
    """Main loop - sweep on startup, then every interval."""
    settings = settings or get_settings()
    interval = max(60, settings.retention_sweep_interval_seconds)
    logger.info("Retention sweeper started (poll every %ds)", interval)

    while True:
        try:
            await asyncio.to_thread(sweep_cycle, settings)
        except Exception as e:
            logger.error("Retention sweep error: %s", str(e))

        await asyncio.sleep(interval)
