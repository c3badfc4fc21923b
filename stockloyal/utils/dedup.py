"""
Request deduplication by idempotency key (X-Request-Id).

First sight of a key creates a marker atomically; any later delivery with the
same key is a duplicate. Two backends:
- file: one <key>.seen file per request id, created with O_CREAT | O_EXCL
- redis: SET NX EX, expiring with the dedupe retention window
"""
import asyncio
import hashlib
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MARKER_SUFFIX = ".seen"
MAX_KEY_LENGTH = 180

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_\-:.]")

# Redis client (lazily initialized)
_redis_client = None


async def get_redis():
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        from stockloyal.config import get_settings
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_client


def sanitize_request_id(request_id: str) -> str:
    """
    Map a caller-supplied id onto a safe filename/key charset.
    Over-long ids keep a readable prefix plus a hash of the full value.
    """
    key = _UNSAFE_KEY_CHARS.sub("_", request_id or "")
    if len(key) > MAX_KEY_LENGTH:
        digest = hashlib.sha256(request_id.encode("utf-8")).hexdigest()[:16]
        key = f"{key[:MAX_KEY_LENGTH - 17]}_{digest}"
    return key


class DedupeStore:
    """Marker store. mark_if_new must be atomic per key."""

    async def mark_if_new(self, key: str) -> bool:
        """Record key. True if it was new, False if it already existed."""
        raise NotImplementedError


class FileDedupeStore(DedupeStore):
    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def marker_path(self, key: str) -> Path:
        return self.directory / f"{key}{MARKER_SUFFIX}"

    async def mark_if_new(self, key: str) -> bool:
        return await asyncio.to_thread(self._create_marker, key)

    def _create_marker(self, key: str) -> bool:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.marker_path(key)
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return False
        try:
            os.write(fd, datetime.now(timezone.utc).isoformat().encode("ascii"))
        finally:
            os.close(fd)
        return True


class RedisDedupeStore(DedupeStore):
    def __init__(self, ttl_seconds: int, prefix: str = "stockloyal:dedupe:"):
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    async def mark_if_new(self, key: str) -> bool:
        redis = await get_redis()
        # SET NX = only set if not exists. Returns True if set (new), None if exists (dupe).
        was_set = await redis.set(
            f"{self.prefix}{key}",
            datetime.now(timezone.utc).isoformat(),
            nx=True,
            ex=self.ttl_seconds,
        )
        return bool(was_set)


def get_dedupe_store(settings) -> DedupeStore:
    if settings.state_backend == "redis":
        return RedisDedupeStore(ttl_seconds=settings.dedupe_retention_days * 86400)
    return FileDedupeStore(Path(settings.webhook_log_dir) / "dedupe")


async def is_duplicate(request_id: str, store: DedupeStore) -> bool:
    """
    Check if this request id was already seen.
    If not, marks it so concurrent or later deliveries observe a duplicate.

    Returns True if duplicate, False if new.
    """
    key = sanitize_request_id(request_id)
    if not key:
        return False

    try:
        created = await store.mark_if_new(key)
    except Exception as e:
        # Store failure should NOT block the webhook - assume not duplicate
        logger.warning(
            "Dedupe store failed for %s: %s. Assuming not duplicate.",
            key, str(e),
            extra={"request_id": request_id},
        )
        return False

    if not created:
        logger.info("Duplicate webhook detected: request_id=%s", key, extra={"request_id": request_id})
        return True
    return False
