"""
Fixed-window rate limiter tests.
"""
import asyncio
import threading
from unittest.mock import AsyncMock

from stockloyal.utils.rate_limiter import (
    FileRateCounterStore,
    RateCounterStore,
    RedisRateCounterStore,
    check_rate_limit,
    counter_key,
    get_rate_counter_store,
    retry_after_seconds,
    window_bucket,
)

NOW = 1_800_000_030.0  # 30s into a minute


class TestWindow:
    def test_same_minute_same_bucket(self):
        assert window_bucket(1_800_000_000.0) == window_bucket(1_800_000_059.9)

    def test_next_minute_new_bucket(self):
        assert window_bucket(1_800_000_060.0) == window_bucket(1_800_000_000.0) + 1

    def test_counter_key_sanitizes_ip(self):
        assert counter_key("::1", 5) == "__1_5"
        assert counter_key("10.0.0.1", 5) == "10.0.0.1_5"

    def test_retry_after(self):
        assert retry_after_seconds(NOW) == 30
        assert retry_after_seconds(1_800_000_059.9) == 1


class TestFileRateCounterStore:
    async def test_allows_up_to_limit_then_rejects(self, tmp_path):
        store = FileRateCounterStore(tmp_path)
        results = [await check_rate_limit("10.0.0.1", 3, store, now=NOW) for _ in range(4)]
        assert [r[0] for r in results] == [True, True, True, False]
        assert results[3][1] == 30

    async def test_rejection_does_not_increment(self, tmp_path):
        store = FileRateCounterStore(tmp_path)
        for _ in range(5):
            await check_rate_limit("10.0.0.1", 2, store, now=NOW)
        key = counter_key("10.0.0.1", window_bucket(NOW))
        assert store.counter_path(key).read_text() == "2"

    async def test_new_window_resets(self, tmp_path):
        store = FileRateCounterStore(tmp_path)
        for _ in range(2):
            await check_rate_limit("10.0.0.1", 2, store, now=NOW)
        assert (await check_rate_limit("10.0.0.1", 2, store, now=NOW))[0] is False
        assert (await check_rate_limit("10.0.0.1", 2, store, now=NOW + 60))[0] is True

    async def test_ips_counted_separately(self, tmp_path):
        store = FileRateCounterStore(tmp_path)
        await check_rate_limit("10.0.0.1", 1, store, now=NOW)
        assert (await check_rate_limit("10.0.0.1", 1, store, now=NOW))[0] is False
        assert (await check_rate_limit("10.0.0.2", 1, store, now=NOW))[0] is True

    async def test_counter_updated_off_the_event_loop(self, tmp_path):
        store = FileRateCounterStore(tmp_path)
        threads = []
        original = store._increment_locked

        def _recording(key, limit):
            threads.append(threading.get_ident())
            return original(key, limit)

        store._increment_locked = _recording
        assert (await check_rate_limit("10.0.0.1", 5, store, now=NOW))[0] is True
        assert threads and threads[0] != threading.get_ident()

    async def test_concurrent_requests_never_exceed_limit(self, tmp_path):
        store = FileRateCounterStore(tmp_path)
        results = await asyncio.gather(*[check_rate_limit("10.0.0.1", 5, store, now=NOW) for _ in range(20)])
        assert [allowed for allowed, _ in results].count(True) == 5


class TestFailOpen:
    async def test_store_error_allows_request(self):
        store = RateCounterStore()
        store.increment_below = AsyncMock(side_effect=OSError("read-only filesystem"))
        allowed, retry_after = await check_rate_limit("10.0.0.1", 1, store, now=NOW)
        assert allowed is True
        assert retry_after is None


class TestRedisRateCounterStore:
    async def test_allowed(self, mock_redis):
        mock_redis.eval = AsyncMock(return_value=[1, 1])
        allowed, _ = await check_rate_limit("10.0.0.1", 60, RedisRateCounterStore(), now=NOW)
        assert allowed is True
        args = mock_redis.eval.call_args.args
        assert args[1] == 1
        assert args[2] == f"stockloyal:ratelimit:{counter_key('10.0.0.1', window_bucket(NOW))}"
        assert args[3] == 60

    async def test_rejected(self, mock_redis):
        mock_redis.eval = AsyncMock(return_value=[0, 60])
        allowed, retry_after = await check_rate_limit("10.0.0.1", 60, RedisRateCounterStore(), now=NOW)
        assert allowed is False
        assert retry_after == 30

    async def test_redis_down_fails_open(self, mock_redis):
        mock_redis.eval = AsyncMock(side_effect=ConnectionError("refused"))
        allowed, _ = await check_rate_limit("10.0.0.1", 60, RedisRateCounterStore(), now=NOW)
        assert allowed is True


class TestGetRateCounterStore:
    def test_file_backend(self, settings):
        store = get_rate_counter_store(settings)
        assert isinstance(store, FileRateCounterStore)
        assert store.directory.name == "ratelimit"

    def test_redis_backend(self, settings):
        settings.state_backend = "redis"
        assert isinstance(get_rate_counter_store(settings), RedisRateCounterStore)
