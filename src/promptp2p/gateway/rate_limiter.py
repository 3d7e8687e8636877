"""
promptp2p/gateway/rate_limiter.py

Per-user fixed window rate limiting.

Each user gets max_requests per window of reset_interval_minutes. The
window starts at the user's first request and restarts on the first
request after it has elapsed. Records live in the "rate-limits" store
namespace under "ratelimit:<email>".

Storage failures fail open: the request is allowed and the error logged.
Checks for one user are serialized so concurrent requests cannot spend
the same budget twice.
"""

import logging
import math
import time
from typing import Any, Callable, Dict, Optional

import trio

from ..config import RateLimitConfig
from ..store import Store

logger = logging.getLogger("promptp2p.gateway.rate_limiter")

RATE_LIMIT_NAMESPACE = "rate-limits"


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """
    Usage:
        limiter = RateLimiter(store, RateLimitConfig.from_env())
        result = await limiter.check_rate_limit("a@b.com")
        if not result["allowed"]:
            return result
    """

    def __init__(
        self,
        store: Optional[Store],
        config: Optional[RateLimitConfig] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Args:
            store: Store holding rate limit records
            config: Window size and request budget
            clock: Current time in milliseconds (defaults to wall clock)
        """
        self.store = store
        self.config = config or RateLimitConfig()
        self._clock = clock or _now_ms
        self._locks: Dict[str, trio.Lock] = {}

    def _lock_for(self, email: str) -> trio.Lock:
        lock = self._locks.get(email)
        if lock is None:
            lock = self._locks[email] = trio.Lock()
        return lock

    @staticmethod
    def key_for(email: str) -> str:
        return f"ratelimit:{email}"

    def _info(self, remaining: int, next_reset_ms: int) -> Dict[str, Any]:
        interval_ms = self.config.reset_interval_ms
        return {
            "remainingRequests": remaining,
            "maxRequests": self.config.max_requests,
            "nextResetInSeconds": math.ceil(next_reset_ms / 1000),
            "windowDurationMinutes": interval_ms // (60 * 1000),
        }

    def _require_store(self) -> Store:
        if self.store is None:
            raise RuntimeError("Store facility not available")
        return self.store

    async def check_rate_limit(self, email: Optional[str]) -> Dict[str, Any]:
        """
        Consume one request from the user's budget.

        Returns:
            {"allowed": True, "rateLimitInfo": {...}} when allowed, otherwise
            a 429 response dict with "allowed": False
        """
        if not email:
            return {"allowed": True}

        async with self._lock_for(email):
            return await self._consume(email)

    async def _consume(self, email: str) -> Dict[str, Any]:
        max_requests = self.config.max_requests
        interval_ms = self.config.reset_interval_ms
        key = self.key_for(email)

        try:
            store = self._require_store()
            now = self._clock()
            record = await store.get(RATE_LIMIT_NAMESPACE, key)

            if not record or now - record["lastResetTimestamp"] >= interval_ms:
                record = {
                    "userEmail": email,
                    "lastResetTimestamp": now,
                    "remainingRequests": max_requests - 1,
                }
                await store.put(RATE_LIMIT_NAMESPACE, key, record)
                return {
                    "allowed": True,
                    "rateLimitInfo": self._info(record["remainingRequests"], interval_ms),
                }

            elapsed = now - record["lastResetTimestamp"]

            if record["remainingRequests"] > 0:
                record["remainingRequests"] -= 1
                await store.put(RATE_LIMIT_NAMESPACE, key, record)
                return {
                    "allowed": True,
                    "rateLimitInfo": self._info(record["remainingRequests"], interval_ms - elapsed),
                }

            retry_after = math.ceil((interval_ms - elapsed) / 1000)
            return {
                "allowed": False,
                "error": True,
                "success": False,
                "status": 429,
                "message": "Rate limit exceeded",
                "retryAfter": retry_after,
                "rateLimitInfo": self._info(0, interval_ms - elapsed),
            }

        except Exception as e:
            logger.error(f"Rate limiter storage error, allowing request: email={email} error={e}")
            return {"allowed": True}

    async def get_rate_limit_status(self, email: Optional[str]) -> Optional[Dict[str, Any]]:
        """Current budget for a user, without consuming a request."""
        if not email:
            return None

        max_requests = self.config.max_requests
        interval_ms = self.config.reset_interval_ms

        try:
            store = self._require_store()
            now = self._clock()
            record = await store.get(RATE_LIMIT_NAMESPACE, self.key_for(email))

            if not record or now - record["lastResetTimestamp"] >= interval_ms:
                return self._info(max_requests, interval_ms)

            elapsed = now - record["lastResetTimestamp"]
            return self._info(record["remainingRequests"], interval_ms - elapsed)

        except Exception as e:
            logger.error(f"Rate limiter status retrieval error: email={email} error={e}")
            return None
