"""
promptp2p/gateway/dispatcher.py

Binds the business handlers of a service worker to RPC methods.

Each handler is wrapped so that every call is timed and counted as
success or error in the worker's metrics. The gateway, the auth service
and the processor all serve their methods through it. The wrapper adds
nothing else: results and exceptions reach the RPC caller exactly as the
handler produced them. ping is answered directly and never reaches a handler.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Dict

from ..config import GATEWAY_TOPIC, METHOD_PING

logger = logging.getLogger("promptp2p.gateway.dispatcher")

BusinessHandler = Callable[[Any, Any], Awaitable[Any]]


class GatewayDispatcher:
    """
    Usage:
        dispatcher = GatewayDispatcher(worker, metrics)
        table = dispatcher.handler_table(BUSINESS_HANDLERS)
        for method, fn in table.items():
            listener.respond(method, fn)
    """

    def __init__(self, gateway, metrics, service_name: str = GATEWAY_TOPIC):
        self.gateway = gateway
        self.metrics = metrics
        self.service_name = service_name

    def ping(self, _payload: Any = None) -> Dict[str, Any]:
        logger.debug("Health check received")
        return {
            "status": "healthy",
            "timestamp": int(time.time() * 1000),
            "service": self.service_name,
        }

    def wrap(self, method: str, handler: BusinessHandler) -> Callable[[Any], Awaitable[Any]]:
        """Return an RPC callable that measures handler(gateway, envelope)."""

        async def dispatch(envelope: Any) -> Any:
            start = time.perf_counter()
            try:
                result = await handler(self.gateway, envelope)
            except Exception as e:
                self._track(method, "error", time.perf_counter() - start)
                logger.error(f"{method} handler raised: {type(e).__name__}: {e}")
                raise
            self._track(method, "success", time.perf_counter() - start)
            return result

        dispatch.__name__ = f"dispatch_{method}"
        return dispatch

    def _track(self, method: str, status: str, seconds: float) -> None:
        if self.metrics is None:
            return
        try:
            self.metrics.track_request(method, status, seconds)
        except Exception as e:
            logger.warning(f"Failed to record metrics for {method}: {e}")

    def handler_table(self, handlers: Dict[str, BusinessHandler]) -> Dict[str, Callable[[Any], Any]]:
        """The RPC method table: ping plus every wrapped business handler."""
        table: Dict[str, Callable[[Any], Any]] = {METHOD_PING: self.ping}
        for method, handler in handlers.items():
            if method == METHOD_PING:
                continue
            table[method] = self.wrap(method, handler)
        return table
