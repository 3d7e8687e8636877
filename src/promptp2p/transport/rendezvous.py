"""
promptp2p/transport/rendezvous.py

Topic announce/lookup on top of libp2p Rendezvous.

Each overlay topic maps to a rendezvous namespace. Services advertise
themselves under the namespace of their topic and clients query it to
find who currently serves the topic.

Architecture:
- Bootstrap/relay nodes run RendezvousService (server mode)
- Gateways, services and clients use RendezvousDiscovery (client mode)

Registrations carry a TTL; a peer that crashes stays listed until its
registration expires, which is where stale announcements come from.

Usage:
    directory = TopicDirectory(host, rendezvous_peer_id=relay_peer_id)
    await directory.start()

    await directory.register("gateway")
    peers = await directory.discover("gateway", force_refresh=True)
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import trio

from ..config import TRANSPORT_PARAMS

logger = logging.getLogger("promptp2p.transport.rendezvous")


@dataclass
class TopicRegistration:
    """Record of one of our own topic announcements."""
    peer_id: str
    topic: str
    ttl: int = TRANSPORT_PARAMS["announce_ttl"]
    registered_at: float = field(default_factory=time.time)

    def is_expired(self) -> bool:
        return time.time() - self.registered_at > self.ttl

    def time_remaining(self) -> float:
        """Seconds until expiration."""
        return max(0, self.ttl - (time.time() - self.registered_at))


class TopicDirectory:
    """
    Maps overlay topics to rendezvous namespaces.

    Without a rendezvous server (no bootstrap peer, or server mode) the
    directory runs local-only: announcements are tracked but only this
    peer's own registrations can be discovered.
    """

    NAMESPACE_PREFIX = "promptp2p/topic/"

    DEFAULT_TTL = TRANSPORT_PARAMS["announce_ttl"]

    def __init__(
        self,
        host=None,
        rendezvous_peer_id: Optional[str] = None,
        is_server: bool = False,
    ):
        """
        Args:
            host: py-libp2p host instance
            rendezvous_peer_id: Peer ID of the rendezvous server (client mode)
            is_server: Run the rendezvous service on this host
        """
        self.host = host
        self._rendezvous_peer_id = rendezvous_peer_id
        self._is_server = is_server

        self._service = None
        self._discovery = None

        self._my_registrations: Dict[str, TopicRegistration] = {}
        self._topic_peers: Dict[str, Set[str]] = {}

        self._refresh_cancel_scope: Optional[trio.CancelScope] = None

    @classmethod
    def namespace(cls, topic: str) -> str:
        return f"{cls.NAMESPACE_PREFIX}{topic}"

    @property
    def local_only(self) -> bool:
        return self._discovery is None

    async def start(self) -> bool:
        """
        Initialize the rendezvous service or discovery client.

        Returns:
            True if started (local-only mode counts as started)
        """
        if not self.host:
            logger.warning("No host set, topic directory disabled")
            return False

        try:
            from libp2p.discovery.rendezvous import (
                RendezvousService,
                RendezvousDiscovery,
            )
            from libp2p.peer.id import ID

            if self._is_server:
                self._service = RendezvousService(self.host)
                logger.info("Rendezvous server started")
                return True

            if not self._rendezvous_peer_id:
                logger.warning("No rendezvous peer ID set, using local-only mode")
                return True

            rendezvous_peer = ID.from_base58(self._rendezvous_peer_id)
            self._discovery = RendezvousDiscovery(
                self.host,
                rendezvous_peer,
                enable_refresh=True,
            )
            logger.info(f"Rendezvous client started, server: {self._rendezvous_peer_id}")
            return True

        except ImportError as e:
            logger.warning(f"Rendezvous import failed: {e}")
            return False
        except Exception as e:
            logger.warning(f"Failed to start rendezvous: {e}")
            return False

    async def stop(self) -> None:
        if self._refresh_cancel_scope:
            self._refresh_cancel_scope.cancel()
            self._refresh_cancel_scope = None

        for topic in list(self._my_registrations.keys()):
            await self.unregister(topic)

        if self._discovery:
            try:
                self._discovery.close()
            except Exception as e:
                logger.debug(f"Error closing rendezvous discovery: {e}")
            self._discovery = None

        self._service = None
        logger.info("Topic directory stopped")

    # ========== Registration ==========

    async def register(self, topic: str, ttl: Optional[int] = None) -> bool:
        """
        Announce this peer under a topic.

        Returns:
            True if the registration was accepted (always True local-only)
        """
        ttl = ttl or self.DEFAULT_TTL
        peer_id = str(self.host.get_id()) if self.host else "unknown"
        self._my_registrations[topic] = TopicRegistration(peer_id=peer_id, topic=topic, ttl=ttl)

        if not self._discovery:
            logger.debug(f"Registered locally for topic={topic}")
            return True

        try:
            actual_ttl = await self._discovery.advertise(self.namespace(topic), ttl)
            logger.debug(f"Registered for topic={topic} (TTL: {actual_ttl})")
            return True
        except Exception as e:
            logger.warning(f"Failed to register for topic={topic}: {e}")
            return False

    async def unregister(self, topic: str) -> bool:
        self._my_registrations.pop(topic, None)

        if not self._discovery:
            return True

        try:
            self._discovery.unregister(self.namespace(topic))
            logger.debug(f"Unregistered from topic={topic}")
            return True
        except Exception as e:
            logger.debug(f"Failed to unregister from topic={topic}: {e}")
            return False

    # ========== Discovery ==========

    async def discover(
        self,
        topic: str,
        limit: int = 100,
        force_refresh: bool = False,
    ) -> List[str]:
        """
        Peers registered under a topic.

        Args:
            topic: Overlay topic
            limit: Maximum number of peers to return
            force_refresh: Bypass the local cache

        Returns:
            List of peer IDs, empty when the query fails
        """
        if not force_refresh and self._topic_peers.get(topic):
            return list(self._topic_peers[topic])[:limit]

        if not self._discovery:
            registration = self._my_registrations.get(topic)
            return [registration.peer_id] if registration else []

        try:
            peer_ids = []
            async for peer_info in self._discovery.find_peers(
                self.namespace(topic),
                limit=limit,
                force_refresh=force_refresh,
            ):
                peer_ids.append(str(peer_info.peer_id))
                if len(peer_ids) >= limit:
                    break

            self._topic_peers[topic] = set(peer_ids)
            logger.debug(f"Discovered {len(peer_ids)} peers for topic={topic}")
            return peer_ids

        except Exception as e:
            logger.warning(f"Discovery failed for topic={topic}: {e}")
            return []

    def get_cached_peers(self, topic: str) -> List[str]:
        return list(self._topic_peers.get(topic, set()))

    def get_my_registrations(self) -> List[str]:
        return list(self._my_registrations.keys())

    # ========== Background refresh ==========

    async def run_refresh_task(
        self,
        interval: float = TRANSPORT_PARAMS["announce_interval"],
        task_status=trio.TASK_STATUS_IGNORED,
    ) -> None:
        """
        Re-announce every registered topic on an interval.

        Usage:
            async with trio.open_nursery() as nursery:
                nursery.start_soon(directory.run_refresh_task)
        """
        self._refresh_cancel_scope = trio.CancelScope()
        task_status.started()

        with self._refresh_cancel_scope:
            while True:
                await trio.sleep(interval)
                for topic, reg in list(self._my_registrations.items()):
                    logger.debug(f"Refreshing announcement for topic={topic}")
                    if not await self.register(topic, reg.ttl):
                        logger.warning(f"Re-announce failed for topic={topic}, will retry")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "active_registrations": len(self._my_registrations),
            "cached_topics": len(self._topic_peers),
            "is_server": self._is_server,
            "local_only": self.local_only,
            "rendezvous_peer": self._rendezvous_peer_id,
        }

    def clear_cache(self) -> None:
        self._topic_peers.clear()
        if self._discovery:
            self._discovery.clear_cache()
