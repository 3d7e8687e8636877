"""
promptp2p/tests/test_integration.py

End-to-end tests: client worker -> gateway worker -> auth/processor services,
all on one in-memory overlay.
"""

import pytest

SECRET = "integration-secret-that-is-long-enough"


async def start_auth_service(overlay, users=None):
    """Minimal auth service: register and login against a dict."""
    from promptp2p.gateway import issue_session_token
    from promptp2p.transport import MemoryTransport

    users = {} if users is None else users
    transport = MemoryTransport(overlay, peer_id="auth-1")

    def register(data):
        if data["email"] in users:
            return {"success": False, "message": "User already exists"}
        users[data["email"]] = data["password"]
        return {"success": True, "message": "User registered"}

    def login(data):
        if users.get(data["email"]) != data["password"]:
            return {"success": False, "message": "Invalid credentials"}
        return {
            "success": True,
            "email": data["email"],
            "key": issue_session_token(data["email"], SECRET),
        }

    listener = await transport.start_listener()
    listener.respond("register", register)
    listener.respond("login", login)
    transport.start_discovery()
    await transport.announce("auth")
    return transport


async def start_processor_service(overlay):
    from promptp2p.transport import MemoryTransport

    transport = MemoryTransport(overlay, peer_id="processor-1")
    listener = await transport.start_listener()
    listener.respond("processRequest", lambda data: {"response": f"Echo: {data['prompt']}"})
    transport.start_discovery()
    await transport.announce("processor")
    return transport


async def start_gateway(overlay, peer_id="gateway-1", max_requests=10):
    from promptp2p.config import GatewayConfig, RateLimitConfig
    from promptp2p.gateway import GatewayWorker
    from promptp2p.transport import MemoryTransport

    config = GatewayConfig(
        jwt_secret=SECRET,
        enable_metrics_server=False,
        rate_limit=RateLimitConfig(max_requests=max_requests),
    )
    worker = GatewayWorker(MemoryTransport(overlay, peer_id=peer_id), config=config)
    assert await worker.start() is True
    return worker


async def start_client(overlay, peer_id="client-1"):
    from promptp2p.client import ClientWorker
    from promptp2p.transport import MemoryTransport

    client = ClientWorker(MemoryTransport(overlay, peer_id=peer_id))
    await client.start()
    return client


@pytest.mark.integration
class TestEndToEnd:
    """Full request paths through the gateway."""

    @pytest.mark.trio
    async def test_register_login_prompt(self):
        """Test the complete happy path."""
        from promptp2p.transport import MemoryOverlay

        overlay = MemoryOverlay()
        await start_auth_service(overlay)
        await start_processor_service(overlay)
        gateway = await start_gateway(overlay)
        client = await start_client(overlay)

        registered = await client.register_user("a@b.com", "pw")
        assert registered == {"success": True, "message": "User registered"}

        login = await client.login_user("a@b.com", "pw")
        assert login["success"] is True
        assert login["rateLimitInfo"]["remainingRequests"] == 10
        assert client.session_key == login["key"]

        result = await client.send_request("Hello")
        assert result["response"] == "Echo: Hello"
        assert result["rateLimitInfo"]["remainingRequests"] == 9

        session = await client.verify_session()
        assert session["valid"] is True
        assert session["email"] == "a@b.com"

        stats = gateway.metrics.get_stats()["requests"]
        assert stats["processPrompt"] == {"success": 1}
        assert stats["login"] == {"success": 1}

    @pytest.mark.trio
    async def test_ping(self):
        """Test the gateway health check through the overlay."""
        from promptp2p.transport import MemoryOverlay

        overlay = MemoryOverlay()
        await start_gateway(overlay)
        client = await start_client(overlay)

        result = await client.requests.call("gateway", "ping", None)

        assert result["status"] == "healthy"
        assert result["service"] == "gateway"

    @pytest.mark.trio
    async def test_prompt_without_login(self):
        """Test an unauthenticated prompt is answered with 401."""
        from promptp2p.transport import MemoryOverlay

        overlay = MemoryOverlay()
        await start_processor_service(overlay)
        await start_gateway(overlay)
        client = await start_client(overlay)

        result = await client.send_request("Hello")

        assert result["status"] == 401

    @pytest.mark.trio
    async def test_failed_login_keeps_token(self):
        """Test a rejected login leaves the manual token in place."""
        from promptp2p.transport import MemoryOverlay

        overlay = MemoryOverlay()
        await start_auth_service(overlay, users={"a@b.com": "pw"})
        await start_gateway(overlay)
        client = await start_client(overlay)
        client.set_api_token("manual-token")

        result = await client.login_user("a@b.com", "wrong")

        assert result == {"success": False, "message": "Invalid credentials"}
        assert client.session_key == "manual-token"

    @pytest.mark.trio
    async def test_rate_limit(self):
        """Test prompts beyond the budget get a 429."""
        from promptp2p.transport import MemoryOverlay

        overlay = MemoryOverlay()
        await start_auth_service(overlay, users={"a@b.com": "pw"})
        await start_processor_service(overlay)
        await start_gateway(overlay, max_requests=2)
        client = await start_client(overlay)
        await client.login_user("a@b.com", "pw")

        await client.send_request("one")
        await client.send_request("two")
        result = await client.send_request("three")

        assert result["status"] == 429
        assert result["retryAfter"] > 0

    @pytest.mark.trio
    async def test_gateway_starts_without_dependents(self):
        """Test startup succeeds when auth and processor are absent."""
        from promptp2p.transport import MemoryOverlay

        overlay = MemoryOverlay()
        gateway = await start_gateway(overlay)

        status = gateway.get_status()
        assert status["stage"] == "ready"
        assert status["discovery"]["auth"]["found"] is False
        assert status["discovery"]["processor"]["found"] is False

    @pytest.mark.trio
    async def test_stale_gateway_announcement(self):
        """Test a crashed gateway still announced is skipped."""
        from promptp2p.transport import MemoryOverlay

        overlay = MemoryOverlay()
        await start_gateway(overlay, peer_id="gateway-old")
        await start_gateway(overlay, peer_id="gateway-new")
        overlay.drop_peer("gateway-old")
        client = await start_client(overlay)

        result = await client.requests.call("gateway", "ping", None)

        assert result["status"] == "healthy"

    @pytest.mark.trio
    async def test_no_gateway(self):
        """Test a missing gateway surfaces the lookup error and hint."""
        from promptp2p.transport import MemoryOverlay, TopicLookupEmptyError

        overlay = MemoryOverlay()
        gateway = await start_gateway(overlay)
        client = await start_client(overlay)
        await gateway.stop()

        with pytest.raises(TopicLookupEmptyError):
            await client.send_request("Hello")

        assert client.last_hint == "Make sure the gateway worker is running"

    @pytest.mark.trio
    async def test_processor_down(self, autojump_clock):
        """Test a dropped processor yields an error response, not an exception."""
        from promptp2p.transport import MemoryOverlay

        overlay = MemoryOverlay()
        await start_auth_service(overlay, users={"a@b.com": "pw"})
        await start_processor_service(overlay)
        gateway = await start_gateway(overlay)
        client = await start_client(overlay)
        await client.login_user("a@b.com", "pw")
        overlay.drop_peer("processor-1")

        result = await client.send_request("Hello")

        assert result["error"] is True
        assert "CHANNEL_CLOSED" in result["message"]
        assert gateway.metrics.get_stats()["requests"]["processPrompt"] == {"success": 1}


@pytest.mark.integration
class TestServiceWorkers:
    """Full request paths through the gateway to the auth and processor workers."""

    @staticmethod
    async def start_services(overlay, reply="Hello from the model"):
        from promptp2p.config import AuthConfig, ProcessorConfig
        from promptp2p.services import AuthWorker, PasswordHasher, ProcessorWorker
        from promptp2p.transport import MemoryTransport

        class CannedGenerator:
            async def generate(self, prompt):
                return reply

        auth = AuthWorker(
            MemoryTransport(overlay, peer_id="auth-1"),
            config=AuthConfig(jwt_secret=SECRET, enable_metrics_server=False),
            hasher=PasswordHasher(time_cost=1, memory_cost=8, parallelism=1),
        )
        processor = ProcessorWorker(
            MemoryTransport(overlay, peer_id="processor-1"),
            CannedGenerator(),
            config=ProcessorConfig(enable_metrics_server=False),
        )
        assert await auth.start() is True
        assert await processor.start() is True
        return auth, processor

    @pytest.mark.trio
    async def test_register_login_prompt_verify(self):
        """Test a user registered with the auth worker can prompt the processor."""
        from promptp2p.transport import MemoryOverlay

        overlay = MemoryOverlay()
        auth, processor = await self.start_services(overlay)
        gateway = await start_gateway(overlay)
        client = await start_client(overlay)

        registered = await client.register_user("a@b.com", "pw")
        assert registered["status"] == 201

        duplicate = await client.register_user("a@b.com", "pw")
        assert duplicate["status"] == 409

        rejected = await client.login_user("a@b.com", "wrong")
        assert rejected["status"] == 401
        assert client.session_key is None

        login = await client.login_user("a@b.com", "pw")
        assert login["success"] is True
        assert client.session_key == login["key"]

        result = await client.send_request("Hello")
        assert result["prompt"] == "Hello"
        assert result["response"] == "Hello from the model"
        assert result["rateLimitInfo"]["remainingRequests"] == 9

        session = await client.verify_session()
        assert session["valid"] is True
        assert session["email"] == "a@b.com"

        assert auth.metrics.get_stats()["requests"]["login"] == {"success": 2}
        assert processor.metrics.get_stats()["requests"]["processRequest"] == {"success": 1}
        assert gateway.get_status()["discovery"]["auth"]["found"] is True
