"""Per-client admission control.

A shared counter store (Redis, or the Upstash/Vercel KV REST API) gives a
fixed window that holds across processes. When that store is missing or
failing, a per-process sliding window takes over for the call: the throttle
may loosen, the service stays up.
"""
import asyncio
import math
import threading
import time
from typing import Callable, Dict, List, Optional, Protocol

import httpx
from loguru import logger
from redis.exceptions import RedisError


class CounterStoreError(Exception):
    """The remote counter store failed or answered with something unusable."""


class CounterStore(Protocol):
    async def increment(self, key: str, ttl_seconds: int) -> int:
        ...


def _as_count(value) -> int:
    if isinstance(value, bool):
        raise CounterStoreError(f"Invalid INCR result: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise CounterStoreError(f"Invalid INCR result: {value!r}") from e


class RedisCounterStore:
    def __init__(self, client):
        self._client = client

    async def increment(self, key: str, ttl_seconds: int) -> int:
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.incr(key)
            pipe.expire(key, ttl_seconds, nx=True)
            results = await pipe.execute()
        except (RedisError, OSError) as e:
            raise CounterStoreError(f"Redis error: {e}") from e
        if not results:
            raise CounterStoreError("Empty pipeline result from Redis")
        return _as_count(results[0])


class UpstashCounterStore:
    """Fixed-window counter over the Upstash Redis REST ``/pipeline`` endpoint."""

    def __init__(self, client: httpx.AsyncClient, rest_url: str, token: str):
        self._client = client
        self._url = f"{rest_url.rstrip('/')}/pipeline"
        self._token = token

    async def increment(self, key: str, ttl_seconds: int) -> int:
        commands = [["INCR", key], ["EXPIRE", key, ttl_seconds, "NX"]]
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }
        try:
            resp = await self._client.post(self._url, headers=headers, json=commands)
        except httpx.HTTPError as e:
            raise CounterStoreError(f"Upstash request failed: {e}") from e
        if resp.status_code < 200 or resp.status_code >= 300:
            raise CounterStoreError(f"Upstash REST error: {resp.status_code} {resp.text}")
        try:
            results = resp.json()
            first = results[0]
            if "error" in first:
                raise CounterStoreError(f"Upstash command error: {first['error']}")
            return _as_count(first["result"])
        except (ValueError, TypeError, KeyError, IndexError) as e:
            raise CounterStoreError(f"Malformed Upstash response: {resp.text}") from e


class SlidingWindowLimiter:
    """In-process sliding window: one timestamp list per identity."""

    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def allow(self, identity: str) -> bool:
        with self._lock:
            now = self._clock()
            valid = [t for t in self._requests.get(identity, []) if now - t < self.window_seconds]
            if len(valid) >= self.max_requests:
                self._requests[identity] = valid
                return False
            valid.append(now)
            self._requests[identity] = valid
            return True

    def sweep(self) -> int:
        """Drop identities whose timestamps have all expired."""
        removed = 0
        with self._lock:
            now = self._clock()
            for identity in list(self._requests):
                valid = [t for t in self._requests[identity] if now - t < self.window_seconds]
                if valid:
                    self._requests[identity] = valid
                else:
                    del self._requests[identity]
                    removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._requests)


class AdmissionLimiter:
    def __init__(
        self,
        local: SlidingWindowLimiter,
        remote: Optional[CounterStore] = None,
        *,
        max_requests: int = 10,
        window_ms: int = 60000,
        key_prefix: str = "periksakata:rl:",
        store_timeout: float = 2.0,
    ):
        self.local = local
        self.remote = remote
        self.max_requests = max_requests
        self.window_ms = window_ms
        self.key_prefix = key_prefix
        self.store_timeout = store_timeout

    @classmethod
    def from_settings(cls, settings, remote: Optional[CounterStore] = None) -> "AdmissionLimiter":
        local = SlidingWindowLimiter(
            settings.rate_limit_max_requests,
            settings.rate_limit_window_ms / 1000.0,
        )
        return cls(
            local,
            remote,
            max_requests=settings.rate_limit_max_requests,
            window_ms=settings.rate_limit_window_ms,
            key_prefix=settings.rate_limit_key_prefix,
            store_timeout=settings.rate_limit_store_timeout,
        )

    @property
    def ttl_seconds(self) -> int:
        return max(1, math.ceil(self.window_ms / 1000))

    async def allow(self, identity: str) -> bool:
        if self.remote is not None:
            try:
                count = await asyncio.wait_for(
                    self.remote.increment(f"{self.key_prefix}{identity}", self.ttl_seconds),
                    timeout=self.store_timeout,
                )
                return count <= self.max_requests
            except asyncio.TimeoutError:
                logger.warning("Remote rate limit timed out, falling back to in-memory")
            except CounterStoreError as e:
                logger.warning(f"Remote rate limit failed, falling back to in-memory: {e}")
        return self.local.allow(identity)

    async def run_sweeper(self) -> None:
        interval = self.window_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            removed = self.local.sweep()
            if removed:
                logger.debug(f"Rate limit sweep removed {removed} idle client(s)")
