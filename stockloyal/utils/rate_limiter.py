"""
Fixed-window rate limiter for the webhook endpoint.

Window = calendar minute (floor(now / 60)). Counter key = (source IP, window).
A request under the ceiling increments and passes; at or over the ceiling it is
rejected without incrementing. Store failures fail open with a warning.
"""
import asyncio
import fcntl
import logging
import math
import os
import re
import time
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60
COUNTER_SUFFIX = ".cnt"

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_\-.]")

# Increment only while below the ceiling. Returns {allowed, count}.
_INCREMENT_BELOW_LUA = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current >= tonumber(ARGV[1]) then
    return {0, current}
end
current = redis.call('INCR', KEYS[1])
redis.call('EXPIRE', KEYS[1], tonumber(ARGV[2]))
return {1, current}
"""


def window_bucket(now: float, window: int = WINDOW_SECONDS) -> int:
    return int(now // window)


def counter_key(source_ip: str, bucket: int) -> str:
    safe_ip = _UNSAFE_KEY_CHARS.sub("_", source_ip or "unknown")
    return f"{safe_ip}_{bucket}"


class RateCounterStore:
    """Per-key counter. increment_below must be atomic per key."""

    async def increment_below(self, key: str, limit: int, ttl: int) -> tuple[bool, int]:
        """Increment key if its count is below limit. Returns (incremented, count)."""
        raise NotImplementedError


class FileRateCounterStore(RateCounterStore):
    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def counter_path(self, key: str) -> Path:
        return self.directory / f"{key}{COUNTER_SUFFIX}"

    async def increment_below(self, key: str, limit: int, ttl: int) -> tuple[bool, int]:
        # flock blocks; keep it off the event loop
        return await asyncio.to_thread(self._increment_locked, key, limit)

    def _increment_locked(self, key: str, limit: int) -> tuple[bool, int]:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.counter_path(key), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            raw = os.read(fd, 32).strip()
            current = int(raw) if raw.isdigit() else 0
            if current >= limit:
                return False, current
            current += 1
            os.lseek(fd, 0, os.SEEK_SET)
            os.ftruncate(fd, 0)
            os.write(fd, str(current).encode("ascii"))
            return True, current
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)


class RedisRateCounterStore(RateCounterStore):
    def __init__(self, prefix: str = "stockloyal:ratelimit:"):
        self.prefix = prefix

    async def increment_below(self, key: str, limit: int, ttl: int) -> tuple[bool, int]:
        from stockloyal.utils.dedup import get_redis
        redis = await get_redis()
        allowed, count = await redis.eval(_INCREMENT_BELOW_LUA, 1, f"{self.prefix}{key}", limit, ttl)
        return bool(int(allowed)), int(count)


def get_rate_counter_store(settings) -> RateCounterStore:
    if settings.state_backend == "redis":
        return RedisRateCounterStore()
    return FileRateCounterStore(Path(settings.webhook_log_dir) / "ratelimit")


def retry_after_seconds(now: float, window: int = WINDOW_SECONDS) -> int:
    """Seconds until the current window rolls over (at least 1)."""
    return max(1, math.ceil(window - (now % window)))


async def check_rate_limit(
    source_ip: str,
    limit: int,
    store: RateCounterStore,
    now: Optional[float] = None,
) -> tuple[bool, Optional[int]]:
    """
    Check and count one request from source_ip in the current window.

    Returns: (allowed: bool, retry_after_seconds: int | None)
    """
    now = time.time() if now is None else now
    key = counter_key(source_ip, window_bucket(now))

    try:
        allowed, count = await store.increment_below(key, limit, WINDOW_SECONDS * 2)
    except Exception as e:
        # Counter store failure should not block webhooks - allow through
        logger.warning(
            "Rate limiter store error: %s. Allowing request.", str(e),
            extra={"source_ip": source_ip},
        )
        return True, None

    if not allowed:
        logger.warning(
            "Rate limit exceeded: ip=%s count=%d limit=%d",
            source_ip, count, limit,
            extra={"source_ip": source_ip},
        )
        return False, retry_after_seconds(now)

    return True, None
