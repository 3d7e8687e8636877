"""
promptp2p/tests/test_rendezvous.py

Unit tests for the rendezvous topic directory and libp2p stream framing.
These run without a libp2p host.
"""

import pytest
from unittest.mock import Mock, AsyncMock


@pytest.fixture
def mock_host():
    host = Mock()
    host.get_id.return_value = "16Uiu2HAmSelfPeer"
    return host


class MockDiscovery:
    """Stand-in for RendezvousDiscovery."""

    def __init__(self, peers=None, fail=False):
        self.peers = peers or []
        self.fail = fail
        self.advertise = AsyncMock(return_value=7200)
        self.unregister = Mock()
        self.close = Mock()
        self.clear_cache = Mock()
        self.queries = []

    async def find_peers(self, namespace, limit=100, force_refresh=False):
        self.queries.append((namespace, force_refresh))
        if self.fail:
            raise ConnectionError("rendezvous unreachable")
        for peer_id in self.peers:
            info = Mock()
            info.peer_id = peer_id
            yield info


class TestTopicDirectory:
    """Tests for TopicDirectory."""

    def test_namespace(self):
        from promptp2p.transport import TopicDirectory

        assert TopicDirectory.namespace("gateway") == "promptp2p/topic/gateway"

    @pytest.mark.trio
    async def test_start_without_host(self):
        """Test the directory is disabled with no host."""
        from promptp2p.transport import TopicDirectory

        assert await TopicDirectory(None).start() is False

    @pytest.mark.trio
    async def test_local_only_register_and_discover(self, mock_host):
        """Test local-only mode finds only our own registration."""
        from promptp2p.transport import TopicDirectory

        directory = TopicDirectory(mock_host)

        assert directory.local_only is True
        assert await directory.register("gateway") is True
        assert await directory.discover("gateway") == ["16Uiu2HAmSelfPeer"]
        assert await directory.discover("auth") == []
        assert directory.get_my_registrations() == ["gateway"]

        await directory.unregister("gateway")
        assert await directory.discover("gateway") == []

    @pytest.mark.trio
    async def test_register_with_discovery(self, mock_host):
        """Test registration advertises the topic namespace."""
        from promptp2p.transport import TopicDirectory

        directory = TopicDirectory(mock_host, rendezvous_peer_id="QmServer")
        directory._discovery = MockDiscovery()

        assert await directory.register("gateway", ttl=120) is True
        directory._discovery.advertise.assert_awaited_once_with("promptp2p/topic/gateway", 120)

    @pytest.mark.trio
    async def test_register_failure(self, mock_host):
        """Test a rejected advertisement returns False."""
        from promptp2p.transport import TopicDirectory

        directory = TopicDirectory(mock_host)
        directory._discovery = MockDiscovery()
        directory._discovery.advertise = AsyncMock(side_effect=Exception("rejected"))

        assert await directory.register("gateway") is False

    @pytest.mark.trio
    async def test_discover_and_cache(self, mock_host):
        """Test discovered peers are cached until a forced refresh."""
        from promptp2p.transport import TopicDirectory

        directory = TopicDirectory(mock_host)
        discovery = MockDiscovery(peers=["peer-a", "peer-b"])
        directory._discovery = discovery

        assert await directory.discover("gateway") == ["peer-a", "peer-b"]
        assert sorted(directory.get_cached_peers("gateway")) == ["peer-a", "peer-b"]

        discovery.peers = ["peer-c"]
        assert sorted(await directory.discover("gateway")) == ["peer-a", "peer-b"]
        assert await directory.discover("gateway", force_refresh=True) == ["peer-c"]
        assert discovery.queries[-1] == ("promptp2p/topic/gateway", True)

    @pytest.mark.trio
    async def test_discover_limit(self, mock_host):
        from promptp2p.transport import TopicDirectory

        directory = TopicDirectory(mock_host)
        directory._discovery = MockDiscovery(peers=["a", "b", "c"])

        assert await directory.discover("gateway", limit=2) == ["a", "b"]

    @pytest.mark.trio
    async def test_discover_failure_returns_empty(self, mock_host):
        """Test rendezvous errors return no peers."""
        from promptp2p.transport import TopicDirectory

        directory = TopicDirectory(mock_host)
        directory._discovery = MockDiscovery(fail=True)

        assert await directory.discover("gateway") == []

    @pytest.mark.trio
    async def test_refresh_task(self, mock_host, autojump_clock):
        """Test registrations are renewed every interval."""
        import trio
        from promptp2p.transport import TopicDirectory

        directory = TopicDirectory(mock_host)
        directory._discovery = MockDiscovery()
        await directory.register("gateway", ttl=60)

        async with trio.open_nursery() as nursery:
            await nursery.start(directory.run_refresh_task, 10)
            await trio.sleep(25)
            nursery.cancel_scope.cancel()

        assert directory._discovery.advertise.await_count == 3

    @pytest.mark.trio
    async def test_stop(self, mock_host):
        """Test stop unregisters every topic and closes discovery."""
        from promptp2p.transport import TopicDirectory

        directory = TopicDirectory(mock_host)
        discovery = MockDiscovery()
        directory._discovery = discovery
        await directory.register("gateway")
        await directory.register("auth")

        await directory.stop()

        assert discovery.unregister.call_count == 2
        discovery.close.assert_called_once()
        assert directory.get_my_registrations() == []
        assert directory.local_only is True

    def test_stats(self, mock_host):
        from promptp2p.transport import TopicDirectory

        stats = TopicDirectory(mock_host, rendezvous_peer_id="QmServer").get_stats()

        assert stats["local_only"] is True
        assert stats["rendezvous_peer"] == "QmServer"
        assert stats["active_registrations"] == 0


class MockStream:
    """Stream returning its buffer in small chunks."""

    def __init__(self, data: bytes, chunk: int = 3):
        self.data = data
        self.chunk = chunk

    async def read(self, n: int) -> bytes:
        size = min(n, self.chunk)
        out, self.data = self.data[:size], self.data[size:]
        return out


class TestStreamFraming:
    """Tests for length-prefixed frames on libp2p streams."""

    @pytest.mark.trio
    async def test_read_frame(self):
        """Test a frame arriving in pieces is reassembled."""
        from promptp2p.protocol.messages import deserialize_message, pack_frame
        from promptp2p.transport.libp2p_transport import read_frame

        stream = MockStream(pack_frame({"method": "ping", "payload": None}))

        body = await read_frame(stream)

        assert deserialize_message(body) == {"method": "ping", "payload": None}

    @pytest.mark.trio
    async def test_read_frame_truncated(self):
        """Test a stream closed mid-frame raises CHANNEL_CLOSED."""
        from promptp2p.protocol.messages import pack_frame
        from promptp2p.transport import ChannelClosedError
        from promptp2p.transport.libp2p_transport import read_frame

        stream = MockStream(pack_frame({"method": "ping"})[:-2])

        with pytest.raises(ChannelClosedError, match="CHANNEL_CLOSED"):
            await read_frame(stream)

    @pytest.mark.trio
    async def test_handle_stream_replies(self):
        """Test an inbound call is answered with a framed reply."""
        from promptp2p.protocol.messages import deserialize_message, frame_length, make_request_frame, pack_frame
        from promptp2p.transport import Libp2pTransport, RpcListener

        transport = Libp2pTransport()
        transport._listener = RpcListener()
        transport._listener.respond("ping", lambda payload: {"status": "healthy"})

        stream = MockStream(pack_frame(make_request_frame("ping", {})))
        stream.write = AsyncMock()
        stream.close = AsyncMock()

        await transport._handle_stream(stream)

        written = stream.write.await_args.args[0]
        assert frame_length(written[:4]) == len(written) - 4
        assert deserialize_message(written[4:]) == {"ok": True, "result": {"status": "healthy"}}
        stream.close.assert_awaited_once()

    @pytest.mark.trio
    async def test_lookup_without_directory(self):
        """Test lookup before the directory is up returns no peers."""
        from promptp2p.transport import Libp2pTransport

        assert await Libp2pTransport().lookup("gateway") == []

    @pytest.mark.trio
    async def test_announce_without_directory(self):
        """Test announce fails until the directory is running."""
        from promptp2p.transport import Libp2pTransport, TransportError

        transport = Libp2pTransport()
        transport.start_discovery()

        with pytest.raises(TransportError, match="not running"):
            await transport.announce("gateway")

    def test_resolve_multiaddr_passthrough(self):
        from promptp2p.transport.libp2p_transport import resolve_multiaddr_dns

        addr = "/ip4/127.0.0.1/tcp/24700/p2p/QmPeer"
        assert resolve_multiaddr_dns(addr) == addr
