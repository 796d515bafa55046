from __future__ import annotations

import asyncio
import json
import threading
import unittest

import httpx

from periksakata.rate_limiter import (
    AdmissionLimiter,
    CounterStoreError,
    RedisCounterStore,
    SlidingWindowLimiter,
    UpstashCounterStore,
)
from tests.fake_redis import FakeRedis


class _Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class _BrokenStore:
    def __init__(self):
        self.calls = 0

    async def increment(self, key: str, ttl_seconds: int) -> int:
        self.calls += 1
        raise CounterStoreError("store down")


class _YieldingBrokenStore:
    async def increment(self, key: str, ttl_seconds: int) -> int:
        await asyncio.sleep(0)
        raise CounterStoreError("store down")


class _SlowStore:
    async def increment(self, key: str, ttl_seconds: int) -> int:
        await asyncio.sleep(5)
        return 1


class SlidingWindowLimiterTestCase(unittest.TestCase):
    def test_eleventh_request_rejected_then_window_elapses(self) -> None:
        clock = _Clock()
        limiter = SlidingWindowLimiter(10, 60.0, clock=clock)
        for _ in range(10):
            self.assertTrue(limiter.allow("1.2.3.4"))
            clock.now += 1
        self.assertFalse(limiter.allow("1.2.3.4"))

        clock.now += 60
        self.assertTrue(limiter.allow("1.2.3.4"))

    def test_rejected_requests_are_not_recorded(self) -> None:
        clock = _Clock()
        limiter = SlidingWindowLimiter(1, 10.0, clock=clock)
        self.assertTrue(limiter.allow("a"))
        for _ in range(5):
            clock.now += 1
            self.assertFalse(limiter.allow("a"))
        clock.now = 1010.0
        self.assertTrue(limiter.allow("a"))

    def test_identities_are_independent(self) -> None:
        limiter = SlidingWindowLimiter(1, 60.0, clock=_Clock())
        self.assertTrue(limiter.allow("a"))
        self.assertFalse(limiter.allow("a"))
        self.assertTrue(limiter.allow("b"))

    def test_concurrent_threads_never_exceed_limit(self) -> None:
        limiter = SlidingWindowLimiter(10, 60.0)
        barrier = threading.Barrier(50)
        results = []
        results_lock = threading.Lock()

        def worker() -> None:
            barrier.wait()
            allowed = limiter.allow("x")
            with results_lock:
                results.append(allowed)

        threads = [threading.Thread(target=worker) for _ in range(50)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        self.assertEqual(len(results), 50)
        self.assertEqual(results.count(True), 10)

    def test_sweep_removes_expired_identities(self) -> None:
        clock = _Clock()
        limiter = SlidingWindowLimiter(5, 60.0, clock=clock)
        limiter.allow("old")
        clock.now += 30
        limiter.allow("fresh")
        clock.now += 40
        self.assertEqual(limiter.sweep(), 1)
        self.assertEqual(len(limiter), 1)


class AdmissionLimiterTestCase(unittest.TestCase):
    def _limiter(self, remote=None, *, clock=None, max_requests: int = 10, store_timeout: float = 2.0):
        local = SlidingWindowLimiter(max_requests, 60.0, clock=clock or _Clock())
        return AdmissionLimiter(
            local,
            remote,
            max_requests=max_requests,
            window_ms=60000,
            key_prefix="periksakata:rl:",
            store_timeout=store_timeout,
        )

    def test_local_only(self) -> None:
        limiter = self._limiter()

        async def run():
            return [await limiter.allow("c") for _ in range(11)]

        results = asyncio.run(run())
        self.assertEqual(results, [True] * 10 + [False])

    def test_remote_fixed_window(self) -> None:
        clock = _Clock()
        redis = FakeRedis(clock=clock)
        limiter = self._limiter(RedisCounterStore(redis))

        async def run():
            results = [await limiter.allow("1.2.3.4") for _ in range(11)]
            ttl = await redis.ttl("periksakata:rl:1.2.3.4")
            return results, ttl

        results, ttl = asyncio.run(run())
        self.assertEqual(results, [True] * 10 + [False])
        self.assertEqual(ttl, 60)
        self.assertEqual(len(limiter.local), 0)

        clock.now += 61
        self.assertTrue(asyncio.run(limiter.allow("1.2.3.4")))

    def test_expiry_is_not_extended_by_later_increments(self) -> None:
        clock = _Clock()
        redis = FakeRedis(clock=clock)
        limiter = self._limiter(RedisCounterStore(redis))

        async def run():
            await limiter.allow("k")
            clock.now += 30
            await limiter.allow("k")
            return await redis.ttl("periksakata:rl:k")

        self.assertEqual(asyncio.run(run()), 30)

    def test_remote_failure_falls_back_to_local(self) -> None:
        redis = FakeRedis()
        redis.down = True
        limiter = self._limiter(RedisCounterStore(redis), max_requests=2)

        async def run():
            return [await limiter.allow("x") for _ in range(3)]

        self.assertEqual(asyncio.run(run()), [True, True, False])
        self.assertEqual(len(limiter.local), 1)

    def test_concurrent_fallback_calls_never_exceed_limit(self) -> None:
        limiter = self._limiter(_YieldingBrokenStore())

        async def run():
            return await asyncio.gather(*(limiter.allow("x") for _ in range(50)))

        results = asyncio.run(run())
        self.assertEqual(results.count(True), 10)

    def test_concurrent_remote_calls_never_exceed_limit(self) -> None:
        limiter = self._limiter(RedisCounterStore(FakeRedis()))

        async def run():
            return await asyncio.gather(*(limiter.allow("x") for _ in range(50)))

        results = asyncio.run(run())
        self.assertEqual(results.count(True), 10)

    def test_store_error_never_rejects(self) -> None:
        store = _BrokenStore()
        limiter = self._limiter(store)
        self.assertTrue(asyncio.run(limiter.allow("x")))
        self.assertEqual(store.calls, 1)

    def test_remote_timeout_falls_back_to_local(self) -> None:
        limiter = self._limiter(_SlowStore(), store_timeout=0.01)
        self.assertTrue(asyncio.run(limiter.allow("x")))
        self.assertEqual(len(limiter.local), 1)

    def test_ttl_rounds_window_up_to_seconds(self) -> None:
        limiter = AdmissionLimiter(SlidingWindowLimiter(1, 1.5), window_ms=1500)
        self.assertEqual(limiter.ttl_seconds, 2)

    def test_sweeper_can_be_cancelled(self) -> None:
        clock = _Clock()
        local = SlidingWindowLimiter(5, 0.01, clock=clock)
        limiter = AdmissionLimiter(local, window_ms=10)
        local.allow("gone")
        clock.now += 1

        async def run():
            task = asyncio.create_task(limiter.run_sweeper())
            await asyncio.sleep(0.05)
            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await task

        asyncio.run(run())
        self.assertEqual(len(local), 0)


class UpstashCounterStoreTestCase(unittest.TestCase):
    def _store(self, handler) -> UpstashCounterStore:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return UpstashCounterStore(client, "https://kv.example.com/", "token-123")

    def test_pipeline_request_and_count(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=[{"result": 3}, {"result": 0}])

        count = asyncio.run(self._store(handler).increment("periksakata:rl:a", 60))
        self.assertEqual(count, 3)
        self.assertEqual(seen["url"], "https://kv.example.com/pipeline")
        self.assertEqual(seen["auth"], "Bearer token-123")
        self.assertEqual(
            seen["body"],
            [["INCR", "periksakata:rl:a"], ["EXPIRE", "periksakata:rl:a", 60, "NX"]],
        )

    def test_http_error_status(self) -> None:
        store = self._store(lambda request: httpx.Response(401, text="unauthorized"))
        with self.assertRaises(CounterStoreError):
            asyncio.run(store.increment("k", 60))

    def test_malformed_body(self) -> None:
        for body in ([], [{"result": "abc"}], {"result": 1}, [{"error": "ERR"}]):
            store = self._store(lambda request, body=body: httpx.Response(200, json=body))
            with self.assertRaises(CounterStoreError):
                asyncio.run(store.increment("k", 60))

    def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("boom", request=request)

        with self.assertRaises(CounterStoreError):
            asyncio.run(self._store(handler).increment("k", 60))

    def test_falls_back_when_upstash_fails(self) -> None:
        store = self._store(lambda request: httpx.Response(500, text="oops"))
        limiter = AdmissionLimiter(SlidingWindowLimiter(1, 60.0), store, max_requests=1)

        async def run():
            return [await limiter.allow("a"), await limiter.allow("a")]

        self.assertEqual(asyncio.run(run()), [True, False])


if __name__ == "__main__":
    unittest.main()
