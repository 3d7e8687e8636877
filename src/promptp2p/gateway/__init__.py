"""
promptp2p/gateway/

Gateway side: bootstrap sequence, dispatcher, business handlers,
rate limiting, the service worker base and the gateway worker.
"""

from .bootstrap import BootstrapStage, DiscoveryOutcome, GatewayBootstrap
from .dispatcher import GatewayDispatcher
from .handlers import (
    BUSINESS_HANDLERS,
    categorize_gateway_error,
    issue_session_token,
    validate_auth_key,
)
from .rate_limiter import RateLimiter
from .service import ServiceWorker
from .worker import GatewayWorker

__all__ = [
    "BootstrapStage",
    "DiscoveryOutcome",
    "GatewayBootstrap",
    "GatewayDispatcher",
    "BUSINESS_HANDLERS",
    "categorize_gateway_error",
    "issue_session_token",
    "validate_auth_key",
    "RateLimiter",
    "ServiceWorker",
    "GatewayWorker",
]
