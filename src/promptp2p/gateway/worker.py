"""
promptp2p/gateway/worker.py

Gateway worker: the service worker that serves the client-facing methods,
with a rate limiter over its store and the retry policy for calls to the
auth and processor services.

Usage:
    worker = GatewayWorker(transport, config=GatewayConfig.from_env())

    async with trio.open_nursery() as nursery:
        if worker.metrics_server:
            await nursery.start(worker.metrics_server.run)
        ok = await worker.start(on_complete=lambda err: ...)
"""

import logging
from typing import Any, Optional

from ..config import (
    DEFAULT_JWT_SECRET,
    GATEWAY_BASE_DELAY_MS,
    GATEWAY_MAX_RETRIES,
    GatewayConfig,
)
from ..metrics import GatewayMetrics
from ..store import Store
from .handlers import BUSINESS_HANDLERS
from .rate_limiter import RateLimiter
from .service import CompletionCallback, ServiceWorker

logger = logging.getLogger("promptp2p.gateway.worker")


class GatewayWorker(ServiceWorker):
    """Entry point of the gateway service."""

    HANDLERS = BUSINESS_HANDLERS

    def __init__(
        self,
        transport,
        store: Optional[Store] = None,
        config: Optional[GatewayConfig] = None,
        metrics: Optional[GatewayMetrics] = None,
    ):
        super().__init__(transport, config or GatewayConfig(), store=store, metrics=metrics)
        self.rate_limiter = RateLimiter(self.store, self.config.rate_limit)

    async def start(self, on_complete: Optional[CompletionCallback] = None) -> bool:
        if self.config.jwt_secret == DEFAULT_JWT_SECRET:
            logger.warning("JWT_SECRET not set, using the development default")
        return await super().start(on_complete)

    async def request_dependent(self, topic: str, method: str, data: Any) -> Any:
        """Call a dependent service with the gateway retry policy."""
        return await self.transport.request(
            topic,
            method,
            data,
            {},
            GATEWAY_MAX_RETRIES,
            GATEWAY_BASE_DELAY_MS,
        )
