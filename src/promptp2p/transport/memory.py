"""
promptp2p/transport/memory.py

In-process overlay transport.

Every MemoryTransport joined to the same MemoryOverlay can announce
topics, look them up and call each other's RPC methods. Requests and
replies go through the same JSON frames as the libp2p transport, so
payloads that would not survive the wire fail here too.

The overlay can simulate stale announcements: drop_peer() keeps a peer's
announcements in place but makes its channel fail with CHANNEL_CLOSED,
and set_latency() delays a peer's replies so requests time out.

Usage:
    overlay = MemoryOverlay()
    gateway = MemoryTransport(overlay, peer_id="gateway-1")
    client = MemoryTransport(overlay, peer_id="client-1")

    listener = await gateway.start_listener()
    listener.respond("ping", lambda payload: {"status": "healthy"})
    gateway.start_discovery()
    await gateway.announce("gateway")

    result = await client.request("gateway", "ping", {"data": None})
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Set

import trio

from ..config import TRANSPORT_PARAMS
from ..protocol.messages import make_request_frame, serialize_message
from .base import RpcListener, Transport
from .errors import ChannelClosedError, RequestTimeoutError

logger = logging.getLogger("promptp2p.transport.memory")


class MemoryOverlay:
    """Shared topic table and peer registry for MemoryTransports."""

    def __init__(self):
        self._nodes: Dict[str, "MemoryTransport"] = {}
        self._topics: Dict[str, List[str]] = {}
        self._dropped: Set[str] = set()
        self._latency: Dict[str, float] = {}

    # ========== Membership ==========

    def join(self, transport: "MemoryTransport") -> None:
        self._nodes[transport.peer_id] = transport
        self._dropped.discard(transport.peer_id)

    def leave(self, peer_id: str) -> None:
        """Remove a peer and all of its announcements."""
        self._nodes.pop(peer_id, None)
        for peers in self._topics.values():
            if peer_id in peers:
                peers.remove(peer_id)

    @property
    def peers(self) -> List[str]:
        return list(self._nodes.keys())

    # ========== Topics ==========

    def announce(self, topic: str, peer_id: str) -> None:
        peers = self._topics.setdefault(topic, [])
        if peer_id not in peers:
            peers.append(peer_id)

    def withdraw(self, topic: str, peer_id: str) -> None:
        peers = self._topics.get(topic, [])
        if peer_id in peers:
            peers.remove(peer_id)

    def lookup(self, topic: str) -> List[str]:
        """Peers announced under a topic, oldest announcement first."""
        return list(self._topics.get(topic, []))

    # ========== Failure simulation ==========

    def drop_peer(self, peer_id: str) -> None:
        """Close a peer's channel while leaving its announcements in place."""
        self._dropped.add(peer_id)
        logger.debug(f"Dropped channel to {peer_id}, announcements kept")

    def restore_peer(self, peer_id: str) -> None:
        self._dropped.discard(peer_id)

    def set_latency(self, peer_id: str, seconds: float) -> None:
        """Delay every reply from a peer by the given number of seconds."""
        if seconds > 0:
            self._latency[peer_id] = seconds
        else:
            self._latency.pop(peer_id, None)

    # ========== Delivery ==========

    async def deliver(self, peer_id: str, data: bytes) -> bytes:
        """
        Hand a request frame to a peer and return its reply frame.

        Raises:
            ChannelClosedError: the peer is gone or its channel was dropped
        """
        await trio.lowlevel.checkpoint()

        node = self._nodes.get(peer_id)
        if node is None or peer_id in self._dropped:
            raise ChannelClosedError(f"peer {peer_id} not reachable")

        delay = self._latency.get(peer_id)
        if delay:
            await trio.sleep(delay)

        reply = await node._serve_frame(data)

        if peer_id in self._dropped:
            raise ChannelClosedError(f"peer {peer_id} closed the channel")
        return reply


class MemoryTransport(Transport):
    """Transport backed by a MemoryOverlay."""

    def __init__(
        self,
        overlay: MemoryOverlay,
        peer_id: Optional[str] = None,
        request_timeout: float = TRANSPORT_PARAMS["request_timeout"],
    ):
        super().__init__()
        self.overlay = overlay
        self.peer_id = peer_id or f"mem-{uuid.uuid4().hex[:12]}"
        self.request_timeout = request_timeout

        self._discovery_started = False
        self._announced: Set[str] = set()
        self._lookup_cache: Dict[str, List[str]] = {}

        overlay.join(self)

    @property
    def announced_topics(self) -> List[str]:
        return sorted(self._announced)

    async def start_listener(self) -> RpcListener:
        if self._listener is None:
            self._listener = RpcListener()
            logger.debug(f"RPC listener started on {self.peer_id}")
        return self._listener

    def start_discovery(self) -> None:
        self._discovery_started = True

    async def announce(self, topic: str) -> None:
        if not self._discovery_started:
            raise RuntimeError("Discovery not started. Call start_discovery() first")
        self.overlay.announce(topic, self.peer_id)
        self._announced.add(topic)
        logger.debug(f"{self.peer_id} announced on topic={topic}")

    async def lookup(self, topic: str, cached: bool = True) -> List[str]:
        await trio.lowlevel.checkpoint()

        if cached and self._lookup_cache.get(topic):
            return list(self._lookup_cache[topic])

        peers = [p for p in self.overlay.lookup(topic) if p != self.peer_id]
        self._lookup_cache[topic] = peers
        return list(peers)

    async def request_peer(
        self,
        peer_id: str,
        method: str,
        payload: Any,
        options: Optional[Dict[str, Any]] = None,
    ) -> Any:
        timeout = (options or {}).get("timeout", self.request_timeout)
        data = serialize_message(make_request_frame(method, payload))

        try:
            with trio.fail_after(timeout):
                reply = await self.overlay.deliver(peer_id, data)
        except trio.TooSlowError:
            raise RequestTimeoutError(timeout)

        return self._decode_reply(reply)

    async def stop(self) -> None:
        for topic in list(self._announced):
            self.overlay.withdraw(topic, self.peer_id)
        self._announced.clear()
        self._lookup_cache.clear()
        self.overlay.leave(self.peer_id)
        logger.debug(f"Memory transport {self.peer_id} stopped")
