"""
promptp2p - Authenticated prompt requests over a peer-to-peer overlay

A client sends authenticated requests (prompt, register, login, verify
session) to a gateway that is found by topic on the overlay. The gateway
starts in a fixed order (listen, register handlers, announce, discover
dependent services) and forwards work to the auth and processor services,
which run as workers of their own.

Built on trio and py-libp2p with:
- Rendezvous topic announce/lookup
- Retrying topic requests that survive stale announcements
- JWT session tokens and per-user rate limiting on the gateway
- Prometheus metrics for every gateway method

Usage (gateway):
    from promptp2p import GatewayWorker, Libp2pTransport

    transport = Libp2pTransport()
    worker = GatewayWorker(transport)

    async with trio.open_nursery() as nursery:
        await nursery.start(transport.run_forever)
        await worker.start()

Usage (client):
    from promptp2p import ClientWorker

    worker = ClientWorker(transport)
    await worker.start()
    await worker.login_user("a@b.com", "pw")
    result = await worker.send_request("Hello")

In-process overlay (local runs and tests):
    from promptp2p import MemoryOverlay, MemoryTransport

    overlay = MemoryOverlay()
    gateway = GatewayWorker(MemoryTransport(overlay))
    client = ClientWorker(MemoryTransport(overlay))
"""

from .client import AuthenticatedRequestClient, ClientWorker, SessionState, SessionStore
from .config import (
    AuthConfig,
    ClientConfig,
    GatewayConfig,
    ProcessorConfig,
    RateLimitConfig,
    TransportConfig,
)
from .gateway import (
    BootstrapStage,
    GatewayBootstrap,
    GatewayDispatcher,
    GatewayWorker,
    RateLimiter,
    ServiceWorker,
)
from .metrics import GatewayMetrics, MetricsServer
from .protocol import ErrorCause, build_envelope, classify, is_stale_announcement
from .services import AuthWorker, OllamaGenerator, ProcessorWorker
from .store import MemoryStore, Store
from .transport import (
    FacilityNotAvailableError,
    Libp2pTransport,
    MemoryOverlay,
    MemoryTransport,
    Transport,
)

__version__ = "0.1.0"
__all__ = [
    # Client
    "AuthenticatedRequestClient",
    "ClientWorker",
    "SessionState",
    "SessionStore",
    # Gateway
    "BootstrapStage",
    "GatewayBootstrap",
    "GatewayDispatcher",
    "GatewayWorker",
    "RateLimiter",
    "ServiceWorker",
    # Services
    "AuthWorker",
    "OllamaGenerator",
    "ProcessorWorker",
    # Metrics
    "GatewayMetrics",
    "MetricsServer",
    # Protocol
    "ErrorCause",
    "build_envelope",
    "classify",
    "is_stale_announcement",
    # Storage
    "MemoryStore",
    "Store",
    # Transport
    "FacilityNotAvailableError",
    "Libp2pTransport",
    "MemoryOverlay",
    "MemoryTransport",
    "Transport",
    # Config
    "AuthConfig",
    "ClientConfig",
    "GatewayConfig",
    "ProcessorConfig",
    "RateLimitConfig",
    "TransportConfig",
]
