"""
Human-readable file audit trail for the webhook receiver.

Layout under the log root:
    receive/receive_YYYY-MM-DD.log   lifecycle lines (RECEIVED, DUPLICATE, ...)
    ack/ack_YYYY-MM-DD.log           ACK_SENT lines
    dedupe/<key>.seen                dedupe markers (see utils.dedup)
    ratelimit/<ip>_<minute>.cnt      rate counters (see utils.rate_limiter)

Appends hold an exclusive flock so concurrent workers never interleave lines.
"""
import asyncio
import fcntl
import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class AuditCategory:
    RECEIVE = "receive"
    ACK = "ack"


class AuditEvent:
    RECEIVED = "RECEIVED"
    UNAUTHORIZED = "UNAUTHORIZED"
    RATE_LIMITED = "RATE_LIMITED"
    DUPLICATE = "DUPLICATE"
    MISSING_SIGNATURE = "MISSING_SIGNATURE"
    BAD_SIGNATURE = "BAD_SIGNATURE"
    ACK_SENT = "ACK_SENT"


def format_fields(**fields) -> str:
    """key=value pairs in call order. None renders as '-', newlines are escaped."""
    parts = []
    for key, val in fields.items():
        text = "-" if val is None else str(val)
        text = text.replace("\r", "\\r").replace("\n", "\\n")
        parts.append(f"{key}={text}")
    return " ".join(parts)


class FileAuditLog:
    def __init__(self, root: str | Path):
        self.root = Path(root)

    def path_for(self, category: str, when: Optional[datetime] = None) -> Path:
        when = when or datetime.now(timezone.utc)
        return self.root / category / f"{category}_{when.strftime('%Y-%m-%d')}.log"

    def append(self, category: str, line: str, when: Optional[datetime] = None) -> bool:
        """
        Append one timestamped line to today's file for category.
        Returns False (and logs) if the write failed; never raises.
        """
        when = when or datetime.now(timezone.utc)
        path = self.path_for(category, when)
        entry = f"[{when.strftime('%Y-%m-%d %H:%M:%S')}] {line}\n".encode("utf-8")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o644)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
                os.write(fd, entry)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
                os.close(fd)
            return True
        except OSError as e:
            logger.warning("Audit log write failed (%s): %s", path, str(e), extra={"category": category})
            return False

    async def event(self, category: str, name: str, **fields) -> bool:
        """Append 'NAME k=v k=v' to category from a worker thread (the append blocks on flock)."""
        line = f"{name} {format_fields(**fields)}".rstrip()
        return await asyncio.to_thread(self.append, category, line)


def delete_older_than(
    directory: Path,
    pattern: str,
    max_age_seconds: float,
    now: Optional[float] = None,
) -> int:
    """Delete files matching pattern whose mtime is older than max_age_seconds."""
    if not directory.is_dir():
        return 0
    now = time.time() if now is None else now
    cutoff = now - max_age_seconds
    removed = 0
    for path in directory.glob(pattern):
        try:
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
        except FileNotFoundError:
            # Removed by a concurrent sweep
            continue
        except OSError as e:
            logger.warning("Retention sweep could not remove %s: %s", path, str(e))
    return removed


def sweep_expired(
    root: str | Path,
    log_retention_days: int = 30,
    dedupe_retention_days: int = 7,
    counter_max_age_seconds: int = 3600,
    now: Optional[float] = None,
) -> dict[str, int]:
    """
    Delete expired log files, dedupe markers and stale rate counters.
    Returns removed-file counts per directory.
    """
    root = Path(root)
    day = 86400
    return {
        AuditCategory.RECEIVE: delete_older_than(
            root / AuditCategory.RECEIVE, "*.log", log_retention_days * day, now
        ),
        AuditCategory.ACK: delete_older_than(
            root / AuditCategory.ACK, "*.log", log_retention_days * day, now
        ),
        "dedupe": delete_older_than(root / "dedupe", "*.seen", dedupe_retention_days * day, now),
        "ratelimit": delete_older_than(root / "ratelimit", "*.cnt", counter_max_age_seconds, now),
    }
