"""
promptp2p/gateway/service.py

Base for workers that serve RPC methods on a topic: the gateway, the auth
service and the processor.

A worker owns its transport, store and metrics. start() runs the ordered
bootstrap (listen, register handlers, announce, look up dependent topics),
with ping answered directly and every business handler timed through the
dispatcher.
"""

import inspect
import logging
from typing import Any, Callable, Dict, Optional

from ..config import ServiceConfig
from ..metrics import GatewayMetrics, MetricsServer
from ..store import MemoryStore, Store
from .bootstrap import GatewayBootstrap
from .dispatcher import BusinessHandler, GatewayDispatcher

logger = logging.getLogger("promptp2p.gateway.service")

CompletionCallback = Callable[[Optional[BaseException]], Any]


class ServiceWorker:
    """
    Subclasses set HANDLERS: handler(worker, data) coroutines by RPC method.

    Usage:
        worker = AuthWorker(transport, config=AuthConfig.from_env())

        async with trio.open_nursery() as nursery:
            if worker.metrics_server:
                await nursery.start(worker.metrics_server.run)
            ok = await worker.start(on_complete=lambda err: ...)
    """

    HANDLERS: Dict[str, BusinessHandler] = {}

    def __init__(
        self,
        transport,
        config: ServiceConfig,
        store: Optional[Store] = None,
        metrics: Optional[GatewayMetrics] = None,
    ):
        self.transport = transport
        self.config = config
        self.store = store if store is not None else MemoryStore()

        self.metrics = metrics or GatewayMetrics(config.service_name, config.metrics_port)
        self.metrics_server: Optional[MetricsServer] = None
        if config.enable_metrics_server:
            self.metrics_server = MetricsServer(
                self.metrics,
                host=config.metrics_host,
                port=config.metrics_port,
            )

        self.dispatcher = GatewayDispatcher(self, self.metrics, config.service_name)
        self.bootstrap: Optional[GatewayBootstrap] = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self, on_complete: Optional[CompletionCallback] = None) -> bool:
        """
        Run the bootstrap sequence.

        on_complete is called with None once the worker is ready, or with
        the exception that stopped startup (the same object that was raised).

        Returns:
            True if the worker reached READY
        """
        handlers = self.dispatcher.handler_table(self.HANDLERS)
        self.bootstrap = GatewayBootstrap(
            self.transport,
            handlers,
            service_topic=self.config.service_topic,
            dependent_topics=self.config.dependent_topics,
            on_ready=self._on_ready,
        )

        try:
            await self.bootstrap.run()
        except Exception as e:
            logger.error(f"{self.config.service_name} worker startup failed: {type(e).__name__}: {e}")
            await self._notify(on_complete, e)
            return False

        await self._notify(on_complete, None)
        return True

    def _on_ready(self) -> None:
        self._started = True
        logger.info(
            f"{self.config.service_name} worker started: topic={self.config.service_topic} "
            f"metrics=http://{self.config.metrics_host}:{self.config.metrics_port}/metrics"
        )

    async def _notify(self, on_complete: Optional[CompletionCallback], error: Optional[BaseException]) -> None:
        if on_complete is None:
            return
        result = on_complete(error)
        if inspect.isawaitable(result):
            await result

    async def stop(self) -> None:
        """Stop every subsystem; one failing does not keep the others running."""
        name = self.config.service_name
        logger.info(f"Stopping {name} worker...")

        if self.metrics_server is not None:
            try:
                await self.metrics_server.stop()
            except Exception as e:
                logger.warning(f"Failed to stop metrics server: {e}")

        if self.transport is not None:
            try:
                await self.transport.stop()
            except Exception as e:
                logger.warning(f"Failed to stop transport: {e}")

        self._started = False
        logger.info(f"{name} worker stopped")

    def get_status(self) -> Dict[str, Any]:
        bootstrap = self.bootstrap
        return {
            "service": self.config.service_name,
            "stage": bootstrap.stage.value if bootstrap else "init",
            "methods": list(bootstrap.registered_methods) if bootstrap else [],
            "discovery": {
                topic: outcome.to_dict() for topic, outcome in (bootstrap.discovery if bootstrap else {}).items()
            },
            "metrics": self.metrics.get_stats(),
        }
