"""
promptp2p/transport/libp2p_transport.py

Overlay transport built on py-libp2p.

Provides:
- RPC over a dedicated stream protocol (RPC_PROTOCOL_ID), one stream per
  call, carrying one length-prefixed JSON frame each way
- Topic announce/lookup through libp2p Rendezvous (TopicDirectory)
- Periodic re-announcement of every announced topic

Usage:
    transport = Libp2pTransport(TransportConfig.from_env())

    async with trio.open_nursery() as nursery:
        await nursery.start(transport.run_forever)
        listener = await transport.start_listener()
        ...
"""

import logging
import re
import socket
from typing import Any, Dict, List, Optional, Set

import trio

from ..config import RPC_PROTOCOL_ID, TransportConfig
from ..protocol.messages import (
    FRAME_HEADER_SIZE,
    frame_length,
    make_request_frame,
    pack_frame,
)
from .base import RpcListener, Transport
from .errors import ChannelClosedError, RequestTimeoutError, TransportError
from .rendezvous import TopicDirectory

logger = logging.getLogger("promptp2p.transport.libp2p")


async def read_frame(stream) -> bytes:
    """Read one length-prefixed frame body from a libp2p stream."""
    header = await _read_exactly(stream, FRAME_HEADER_SIZE)
    return await _read_exactly(stream, frame_length(header))


async def _read_exactly(stream, size: int) -> bytes:
    buffer = b""
    while len(buffer) < size:
        chunk = await stream.read(size - len(buffer))
        if not chunk:
            raise ChannelClosedError(f"stream closed after {len(buffer)}/{size} bytes")
        buffer += chunk
    return buffer


class Libp2pTransport(Transport):
    """
    Transport over a py-libp2p host.

    Lifecycle:
        start()        create and start the host, register the RPC protocol
        run_forever()  connect to bootstrap peers, start the topic directory,
                       re-announce topics until cancelled
        stop()         tear everything down
    """

    def __init__(self, config: Optional[TransportConfig] = None):
        super().__init__()
        self.config = config or TransportConfig()

        self._host = None
        self._host_context = None
        self._listen_addrs: List[Any] = []
        self._directory: Optional[TopicDirectory] = None

        self._started = False
        self._discovery_started = False
        self._announced: Set[str] = set()
        self._cancel_scope: Optional[trio.CancelScope] = None

    # ========== Lifecycle ==========

    @property
    def peer_id(self) -> Optional[str]:
        if self._host:
            return str(self._host.get_id())
        return None

    async def start(self) -> None:
        """Create the libp2p host and start listening."""
        if self._started:
            return

        logger.info("Starting libp2p transport...")
        await self._create_host()
        await self._start_host()
        self._host.set_stream_handler(RPC_PROTOCOL_ID, self._handle_stream)
        self._started = True
        logger.info(f"libp2p transport started. PeerID: {self.peer_id}")

    async def run_forever(self, task_status=trio.TASK_STATUS_IGNORED) -> None:
        """
        Run background tasks until cancelled.

        Signals task_status once bootstrap peers are dialed and the topic
        directory is up, so announce/lookup work from then on.
        """
        await self.start()

        async with trio.open_nursery() as nursery:
            self._cancel_scope = nursery.cancel_scope

            try:
                await self._connect_to_bootstrap()
            except Exception as e:
                logger.error(f"Bootstrap connection failed: {e}")

            await self._init_directory()
            if self._directory:
                await nursery.start(self._directory.run_refresh_task, self.config.announce_interval)

            task_status.started()

            try:
                while True:
                    await trio.sleep(1)
            except trio.Cancelled:
                logger.info("run_forever cancelled, stopping transport...")
                raise

    async def stop(self) -> None:
        if not self._started:
            return

        logger.info("Stopping libp2p transport...")

        if self._cancel_scope:
            self._cancel_scope.cancel()
            self._cancel_scope = None

        if self._directory:
            try:
                await self._directory.stop()
            except Exception as e:
                logger.debug(f"Error stopping topic directory: {e}")
            self._directory = None

        await self._stop_host()
        self._started = False
        logger.info("libp2p transport stopped")

    # ========== Serving ==========

    async def start_listener(self) -> RpcListener:
        if not self._started:
            await self.start()
        if self._listener is None:
            self._listener = RpcListener()
            logger.info(f"RPC listener ready on {RPC_PROTOCOL_ID}")
        return self._listener

    async def _handle_stream(self, stream) -> None:
        """Answer one inbound RPC call."""
        try:
            data = await read_frame(stream)
            reply = await self._serve_frame(data)
            body_len = len(reply)
            await stream.write(body_len.to_bytes(FRAME_HEADER_SIZE, "big") + reply)
        except Exception as e:
            logger.error(f"RPC stream handler error: {type(e).__name__}: {e}")
        finally:
            try:
                await stream.close()
            except Exception as e:
                logger.debug(f"Error closing inbound stream: {e}")

    # ========== Discovery ==========

    def start_discovery(self) -> None:
        self._discovery_started = True

    async def announce(self, topic: str) -> None:
        if not self._discovery_started:
            raise RuntimeError("Discovery not started. Call start_discovery() first")
        if self._directory is None:
            raise TransportError(f"Topic directory not running, cannot announce topic={topic}")

        ok = await self._directory.register(topic, self.config.announce_ttl)
        if not ok:
            raise TransportError(f"Failed to announce topic={topic}")
        self._announced.add(topic)
        logger.info(f"Announced topic={topic}")

    async def lookup(self, topic: str, cached: bool = True) -> List[str]:
        if self._directory is None:
            return []
        peers = await self._directory.discover(topic, force_refresh=not cached)
        return [p for p in peers if p != self.peer_id]

    # ========== Requests ==========

    async def request_peer(
        self,
        peer_id: str,
        method: str,
        payload: Any,
        options: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if not self._host:
            raise TransportError("libp2p host not started")

        from libp2p.peer.id import ID as PeerID

        timeout = (options or {}).get("timeout", self.config.request_timeout)
        frame = pack_frame(make_request_frame(method, payload))

        try:
            with trio.fail_after(timeout):
                try:
                    stream = await self._host.new_stream(PeerID.from_base58(peer_id), [RPC_PROTOCOL_ID])
                except trio.TooSlowError:
                    raise
                except Exception as e:
                    raise TransportError(
                        f"ECONNREFUSED: cannot open stream to {peer_id[:16]}...: {e}"
                    ) from e

                try:
                    await stream.write(frame)
                    reply = await read_frame(stream)
                except TransportError:
                    raise
                except trio.TooSlowError:
                    raise
                except Exception as e:
                    raise ChannelClosedError(f"{type(e).__name__}: {e}") from e
                finally:
                    with trio.CancelScope(shield=True):
                        try:
                            await stream.close()
                        except Exception as e:
                            logger.debug(f"Error closing outbound stream: {e}")

        except trio.TooSlowError:
            raise RequestTimeoutError(timeout)

        return self._decode_reply(reply)

    # ========== Host ==========

    async def _create_host(self) -> None:
        """Create libp2p host with a secp256k1 identity."""
        try:
            from libp2p import new_host
            from libp2p.crypto.secp256k1 import create_new_key_pair
            from libp2p.utils.address_validation import get_available_interfaces

            key_pair = create_new_key_pair(self.config.key_seed)

            self._host = new_host(
                key_pair=key_pair,
                negotiate_timeout=30,
            )
            self._listen_addrs = get_available_interfaces(self.config.listen_port)
            logger.debug(f"Created libp2p host: {self._host.get_id()}")

        except ImportError:
            logger.error("libp2p not installed")
            raise
        except Exception as e:
            logger.error(f"Failed to create host: {e}")
            raise

    async def _start_host(self) -> None:
        """Start the libp2p host (enter its run context)."""
        logger.info(f"Starting host with listen_addrs: {self._listen_addrs}")
        self._host_context = self._host.run(listen_addrs=self._listen_addrs)
        await self._host_context.__aenter__()
        logger.info(f"Host listening on: {self._host.get_addrs()}")

    async def _stop_host(self) -> None:
        if self._host_context:
            try:
                await self._host_context.__aexit__(None, None, None)
            except GeneratorExit:
                pass
            except trio.Cancelled:
                raise
            except Exception as e:
                logger.debug(f"Error stopping host (non-critical): {e}")
            finally:
                self._host_context = None

    async def _connect_to_bootstrap(self) -> None:
        if not self.config.bootstrap_peers:
            logger.info("No bootstrap peers configured")
            return

        from multiaddr import Multiaddr
        from libp2p.peer.peerinfo import info_from_p2p_addr

        logger.info(f"Connecting to {len(self.config.bootstrap_peers)} bootstrap peer(s)...")

        for addr in self.config.bootstrap_peers:
            try:
                peer_info = info_from_p2p_addr(Multiaddr(resolve_multiaddr_dns(addr)))
                logger.info(f"Dialing bootstrap peer {peer_info.peer_id}...")

                with trio.move_on_after(60) as cancel_scope:
                    await self._host.connect(peer_info)

                if cancel_scope.cancelled_caught:
                    logger.warning(f"TIMEOUT connecting to bootstrap {peer_info.peer_id}")
                else:
                    logger.info(f"Connected to bootstrap: {peer_info.peer_id}")

            except Exception as e:
                logger.warning(f"FAILED to connect to bootstrap {addr[:50]}...: {type(e).__name__}: {e}")

    async def _init_directory(self) -> None:
        """Start the topic directory, using the first bootstrap peer as rendezvous point."""
        rendezvous_peer_id = None
        if not self.config.rendezvous_is_server and self.config.bootstrap_peers:
            try:
                from multiaddr import Multiaddr
                from libp2p.peer.peerinfo import info_from_p2p_addr

                maddr = Multiaddr(resolve_multiaddr_dns(self.config.bootstrap_peers[0]))
                rendezvous_peer_id = str(info_from_p2p_addr(maddr).peer_id)
            except Exception as e:
                logger.warning(f"Failed to parse bootstrap for rendezvous: {e}")

        directory = TopicDirectory(
            self._host,
            rendezvous_peer_id=rendezvous_peer_id,
            is_server=self.config.rendezvous_is_server,
        )
        if await directory.start():
            self._directory = directory
            mode = "server" if self.config.rendezvous_is_server else "client"
            logger.info(f"Topic directory initialized ({mode} mode)")
        else:
            logger.error("Topic directory failed to start, announce/lookup unavailable")


def resolve_multiaddr_dns(addr: str) -> str:
    """
    Replace a /dns or /dns4 component with the resolved /ip4 address.

    py-libp2p's TCP transport does not resolve DNS names when dialing.
    """
    dns_pattern = r"/dns4?/([^/]+)/"
    match = re.search(dns_pattern, addr)
    if not match:
        return addr

    hostname = match.group(1)
    try:
        ip_addr = socket.gethostbyname(hostname)
        return re.sub(dns_pattern, f"/ip4/{ip_addr}/", addr)
    except socket.gaierror as e:
        logger.warning(f"DNS resolution failed for {hostname}: {e}")
        return addr
