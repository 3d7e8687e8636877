"""
promptp2p/gateway/bootstrap.py

Ordered gateway startup.

    INIT -> LISTENING -> HANDLERS_REGISTERED -> ANNOUNCING -> DISCOVERING -> READY

Missing transport, listener failure and announce failure end in FAILED
and raise. Everything after the announcement is best effort: a dependent
topic that cannot be looked up is recorded and skipped.
"""

import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..config import DEPENDENT_TOPICS, GATEWAY_TOPIC
from ..transport.errors import FacilityNotAvailableError

logger = logging.getLogger("promptp2p.gateway.bootstrap")


class BootstrapStage(Enum):
    """Gateway startup stages."""
    INIT = "init"
    LISTENING = "listening"
    HANDLERS_REGISTERED = "handlers_registered"
    ANNOUNCING = "announcing"
    DISCOVERING = "discovering"
    READY = "ready"
    FAILED = "failed"


@dataclass
class DiscoveryOutcome:
    """Result of looking up one dependent topic during startup."""
    topic: str
    found: bool = False
    peers: List[str] = field(default_factory=list)
    error: Optional[str] = None
    checked_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "topic": self.topic,
            "found": self.found,
            "peers": list(self.peers),
            "error": self.error,
            "checked_at": self.checked_at,
        }


class GatewayBootstrap:
    """
    Runs the startup sequence once.

    Usage:
        bootstrap = GatewayBootstrap(transport, handler_table)
        await bootstrap.run()
        assert bootstrap.stage is BootstrapStage.READY
    """

    def __init__(
        self,
        transport,
        handlers: Dict[str, Callable[[Any], Any]],
        service_topic: str = GATEWAY_TOPIC,
        dependent_topics: Sequence[str] = DEPENDENT_TOPICS,
        on_ready: Optional[Callable[[], Any]] = None,
    ):
        """
        Args:
            transport: Transport to serve and announce on (None is a fatal error)
            handlers: RPC method table to register
            service_topic: Topic this gateway announces
            dependent_topics: Topics looked up after announcing, in order
            on_ready: Completion hook called when startup reaches READY
        """
        self.transport = transport
        self.handlers = dict(handlers)
        self.service_topic = service_topic
        self.dependent_topics = tuple(dependent_topics)
        self.on_ready = on_ready

        self.stage = BootstrapStage.INIT
        self.history: List[BootstrapStage] = [BootstrapStage.INIT]
        self.discovery: Dict[str, DiscoveryOutcome] = {}
        self.registered_methods: List[str] = []

    def _enter(self, stage: BootstrapStage) -> None:
        self.stage = stage
        self.history.append(stage)
        logger.debug(f"Gateway bootstrap stage: {stage.value}")

    def _fail(self, reason: str) -> None:
        self._enter(BootstrapStage.FAILED)
        logger.error(f"Gateway bootstrap failed: {reason}")

    @property
    def ready(self) -> bool:
        return self.stage is BootstrapStage.READY

    async def run(self) -> None:
        """
        Execute the startup sequence.

        Raises:
            FacilityNotAvailableError: no transport
            Exception: the listener or announce error, unchanged
        """
        if self.stage is not BootstrapStage.INIT:
            raise RuntimeError(f"Bootstrap already ran (stage={self.stage.value})")

        if self.transport is None:
            self._fail("net facility not available")
            raise FacilityNotAvailableError("net")

        self._enter(BootstrapStage.LISTENING)
        try:
            listener = await self.transport.start_listener()
        except Exception as e:
            self._fail(f"RPC listener did not start: {e}")
            raise
        logger.info("RPC listener started")

        self._register_handlers(listener)
        self._enter(BootstrapStage.HANDLERS_REGISTERED)

        self._enter(BootstrapStage.ANNOUNCING)
        try:
            self.transport.start_discovery()
            await self.transport.announce(self.service_topic)
        except Exception as e:
            self._fail(f"announce of topic={self.service_topic} failed: {e}")
            raise
        logger.info(f"Service announced: topic={self.service_topic}")

        self._enter(BootstrapStage.DISCOVERING)
        for topic in self.dependent_topics:
            self.discovery[topic] = await self._discover(topic)

        await self._complete()
        self._enter(BootstrapStage.READY)
        logger.info(
            f"Gateway ready: topic={self.service_topic} "
            f"methods={','.join(self.registered_methods)}"
        )

    def _register_handlers(self, listener) -> None:
        respond = getattr(listener, "respond", None)
        if not callable(respond):
            logger.warning(
                f"RPC method registration skipped: listener "
                f"{type(listener).__name__} has no respond()"
            )
            return

        for method, handler in self.handlers.items():
            respond(method, handler)
            self.registered_methods.append(method)
        logger.info(f"RPC methods registered: {', '.join(self.registered_methods)}")

    async def _discover(self, topic: str) -> DiscoveryOutcome:
        """Look up one dependent topic; failures are recorded, never raised."""
        try:
            peers = await self.transport.lookup(topic, cached=False)
        except Exception as e:
            logger.warning(f"Service discovery failed: topic={topic} error={e}")
            return DiscoveryOutcome(topic=topic, error=str(e) or type(e).__name__)

        peers = list(peers or [])
        logger.info(f"Service discovery: topic={topic} peersFound={len(peers)}")
        return DiscoveryOutcome(topic=topic, found=bool(peers), peers=peers)

    async def _complete(self) -> None:
        if self.on_ready is None:
            return
        result = self.on_ready()
        if inspect.isawaitable(result):
            await result
