"""
Sliding-window rate limiting

Counters live behind a small store interface: a process-local map for
single-instance deployments, or Redis when several API instances must share
one limit. The process-local store only gives an approximate global limit
when the API is scaled horizontally.
"""

import logging
import os
import threading
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional, Protocol

import redis
from fastapi import HTTPException, Request, status

from .config import (
    RATE_LIMIT_ADMIN_MAX,
    RATE_LIMIT_BACKEND,
    RATE_LIMIT_CLEANUP_SECONDS,
    RATE_LIMIT_GLOBAL_MAX,
    RATE_LIMIT_USER_MAX,
    RATE_LIMIT_WINDOW_SECONDS,
)
from .errors import AgendaError, ResourceExhaustedError

logger = logging.getLogger(__name__)

# Redis connection
redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client
    Supports both a REDIS_URL and individual host/port settings
    """
    global redis_client

    if redis_client is None:
        logger.info("🔄 Initializing Redis connection...")
        redis_url = os.getenv("REDIS_URL")
        options = {
            "decode_responses": True,
            "socket_connect_timeout": 15,
            "socket_timeout": 30,
            "retry_on_timeout": True,
            "health_check_interval": 30,
            "max_connections": 20,
        }
        try:
            if redis_url:
                client = redis.from_url(redis_url, **options)
            else:
                client = redis.Redis(
                    host=os.getenv("REDIS_HOST", "localhost"),
                    port=int(os.getenv("REDIS_PORT", "6379")),
                    password=os.getenv("REDIS_PASSWORD", None),
                    db=int(os.getenv("REDIS_DB", "0")),
                    ssl=os.getenv("REDIS_SSL", "false").lower() == "true",
                    **options,
                )
            client.ping()
        except Exception as e:
            logger.error(f"❌ Failed to connect to Redis: {str(e)}")
            raise
        redis_client = client
        logger.info("✅ Redis connected successfully")

    return redis_client


@dataclass
class RateLimitWindow:
    window_start: float
    count: int
    last_seen: float


class RateLimitStore(Protocol):
    max_requests: int
    window_seconds: int

    def check_and_increment(self, key: str) -> bool:
        """Count one request for `key`; False when the window is already full"""
        ...

    def current_count(self, key: str) -> int:
        ...

    def cleanup(self) -> int:
        ...

    def get_stats(self) -> dict:
        ...


class InMemoryRateLimitStore:
    """Process-local windows guarded by a lock"""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._windows: dict[str, RateLimitWindow] = {}
        self._lock = Lock()

    def check_and_increment(self, key: str) -> bool:
        now = self.clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now - window.window_start >= self.window_seconds:
                self._windows[key] = RateLimitWindow(window_start=now, count=1, last_seen=now)
                return True
            window.last_seen = now
            if window.count >= self.max_requests:
                return False
            window.count += 1
            return True

    def current_count(self, key: str) -> int:
        with self._lock:
            window = self._windows.get(key)
            return window.count if window else 0

    def cleanup(self) -> int:
        """Evict windows untouched for twice the window length"""
        cutoff = self.clock() - 2 * self.window_seconds
        with self._lock:
            stale = [key for key, window in self._windows.items() if window.last_seen < cutoff]
            for key in stale:
                del self._windows[key]
        if stale:
            logger.debug(f"🧹 Cleaned up {len(stale)} expired rate limit entries")
        return len(stale)

    def get_stats(self) -> dict:
        now = self.clock()
        with self._lock:
            active = sum(
                1 for window in self._windows.values() if now - window.window_start < self.window_seconds
            )
            return {"totalKeys": len(self._windows), "activeWindows": active}


class RedisRateLimitStore:
    """Shared fixed windows on Redis with INCR + EXPIRE"""

    def __init__(
        self,
        client: redis.Redis,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "rate_limit",
    ):
        self.client = client
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    def check_and_increment(self, key: str) -> bool:
        redis_key = self._key(key)
        count = self.client.incr(redis_key)
        if count == 1:
            self.client.expire(redis_key, self.window_seconds)
        return count <= self.max_requests

    def current_count(self, key: str) -> int:
        value = self.client.get(self._key(key))
        return min(int(value), self.max_requests) if value else 0

    def cleanup(self) -> int:
        # Keys expire on their own
        return 0

    def get_stats(self) -> dict:
        keys = sum(1 for _ in self.client.scan_iter(match=f"{self.key_prefix}:*", count=500))
        return {"totalKeys": keys, "activeWindows": keys}


class RateLimiter:
    """Guards an operation with a per (actor, endpoint) sliding window"""

    def __init__(
        self,
        store: RateLimitStore,
        name: str = "global",
        violation_sink: Optional[Callable[[dict], None]] = None,
        cleanup_interval: int = RATE_LIMIT_CLEANUP_SECONDS,
    ):
        self.store = store
        self.name = name
        self.violation_sink = violation_sink
        self.cleanup_interval = cleanup_interval
        self._stop_event = threading.Event()
        self._cleanup_thread: Optional[threading.Thread] = None

    def check_limit(self, actor_id: str, endpoint: str) -> None:
        """Raise ResourceExhaustedError when the actor's window for this endpoint is full"""
        key = f"{actor_id}:{endpoint}"
        if self.store.check_and_increment(key):
            return

        limit = self.store.max_requests
        window = self.store.window_seconds
        logger.warning(f"🚫 Rate limit EXCEEDED ({self.name}) for {key} - {limit}/{window}s")
        self._record_violation(actor_id, endpoint, limit, window)
        raise ResourceExhaustedError(
            f"Rate limit exceeded. Maximum {limit} requests per {window} seconds.",
            details={"limit": limit, "window_seconds": window, "endpoint": endpoint},
            retry_after=window,
        )

    def _record_violation(self, actor_id: str, endpoint: str, limit: int, window: int) -> None:
        if not self.violation_sink:
            return
        try:
            self.violation_sink(
                {
                    "actor_id": actor_id,
                    "type": "rateLimit",
                    "severity": "high",
                    "message": f"Rate limit exceeded for endpoint {endpoint}",
                    "action": "throttle",
                    "metadata": {
                        "endpoint": endpoint,
                        "requestCount": self.store.current_count(f"{actor_id}:{endpoint}"),
                        "limit": limit,
                        "windowMs": window * 1000,
                        "limiter": self.name,
                    },
                }
            )
        except Exception as e:
            logger.error(f"❌ Failed to record rate limit violation: {e}")

    def cleanup(self) -> int:
        return self.store.cleanup()

    def get_stats(self) -> dict:
        return self.store.get_stats()

    def start_cleanup_timer(self) -> None:
        if self._cleanup_thread and self._cleanup_thread.is_alive():
            return
        self._stop_event.clear()

        def run():
            while not self._stop_event.wait(self.cleanup_interval):
                try:
                    self.cleanup()
                except Exception as e:
                    logger.error(f"❌ Rate limiter cleanup failed ({self.name}): {e}")

        self._cleanup_thread = threading.Thread(
            target=run, name=f"rate-limit-cleanup-{self.name}", daemon=True
        )
        self._cleanup_thread.start()

    def stop_cleanup_timer(self) -> None:
        self._stop_event.set()
        if self._cleanup_thread:
            self._cleanup_thread.join(timeout=5)
            self._cleanup_thread = None


LIMITER_MAXIMUMS = {
    "global": RATE_LIMIT_GLOBAL_MAX,
    "user": RATE_LIMIT_USER_MAX,
    "admin": RATE_LIMIT_ADMIN_MAX,
}


def build_rate_limiters(
    backend: str = RATE_LIMIT_BACKEND,
    violation_sink: Optional[Callable[[dict], None]] = None,
    window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
    clock: Callable[[], float] = time.time,
) -> dict[str, RateLimiter]:
    """The global, user and admin limiters, backed by memory or Redis"""
    limiters = {}
    for name, maximum in LIMITER_MAXIMUMS.items():
        if backend == "redis":
            store = RedisRateLimitStore(
                get_redis_client(), maximum, window_seconds, key_prefix=f"rate_limit:{name}"
            )
        else:
            store = InMemoryRateLimitStore(maximum, window_seconds, clock=clock)
        limiters[name] = RateLimiter(store, name=name, violation_sink=violation_sink)
    logger.info(f"✅ Rate limiters ready ({backend}): {', '.join(limiters)}")
    return limiters


def get_actor_id(request: Request) -> str:
    actor = request.headers.get("X-Actor-Id")
    if actor:
        return actor
    client_ip = request.client.host if request.client else "unknown"
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    return client_ip


def create_rate_limiter(limiter_name: str, endpoint: str):
    """
    Create a FastAPI dependency that applies one of the app's limiters

    Example usage:
        @router.post("/reservations")
        async def create_reservation(..., _: None = Depends(create_rate_limiter("user", "createReservation"))):
            ...
    """

    async def rate_limiter(request: Request):
        limiters = getattr(request.app.state, "rate_limiters", None) or {}
        limiter = limiters.get(limiter_name)
        if limiter is None:
            logger.warning(f"⚠️ Rate limiter '{limiter_name}' not configured; request allowed")
            return
        try:
            limiter.check_limit(get_actor_id(request), endpoint)
        except AgendaError:
            raise
        except Exception as e:
            logger.error(f"❌ Rate limiting error: {str(e)}")
            logger.warning("🔒 Denying request due to rate limiting error (fail-closed mode)")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Rate limiting service temporarily unavailable",
            ) from e

    return rate_limiter
