"""
promptp2p/config.py

Configuration constants and data classes for promptp2p.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple
import logging
import os

logger = logging.getLogger("promptp2p.config")


# Default listening port for the libp2p host
DEFAULT_PORT = 24700

# Default ports for each worker's Prometheus endpoint
DEFAULT_METRICS_PORT = 9100
AUTH_METRICS_PORT = 9101
PROCESSOR_METRICS_PORT = 9102

# Bootstrap peers (multiaddrs of rendezvous/relay nodes)
# Format: /ip4/{ip}/tcp/{port}/p2p/{peer_id}
BOOTSTRAP_PEERS: List[str] = []

# Topics announced on the overlay
GATEWAY_TOPIC = "gateway"
AUTH_TOPIC = "auth"
PROCESSOR_TOPIC = "processor"
DEPENDENT_TOPICS: Tuple[str, ...] = (AUTH_TOPIC, PROCESSOR_TOPIC)

# Gateway RPC methods
METHOD_PING = "ping"
METHOD_PROCESS_PROMPT = "processPrompt"
METHOD_REGISTER = "register"
METHOD_LOGIN = "login"
METHOD_VERIFY_SESSION = "verifySession"
GATEWAY_METHODS: Tuple[str, ...] = (
    METHOD_PING,
    METHOD_PROCESS_PROMPT,
    METHOD_REGISTER,
    METHOD_LOGIN,
    METHOD_VERIFY_SESSION,
)

# Downstream RPC methods
PROCESSOR_METHOD = "processRequest"

# Protocol IDs
RPC_PROTOCOL_ID = "/promptp2p/rpc/1.0.0"

# Retry policy for interactive client calls (fixed, not configurable)
INTERACTIVE_MAX_RETRIES = 3
INTERACTIVE_BASE_DELAY_MS = 200

# Retry policy for gateway -> dependent service calls
GATEWAY_MAX_RETRIES = 3
GATEWAY_BASE_DELAY_MS = 100

# Transport parameters
TRANSPORT_PARAMS = {
    "request_timeout": 30.0,        # seconds per peer request
    "announce_interval": 60.0,      # seconds between re-announcements
    "announce_ttl": 7200,           # rendezvous registration TTL
    "backoff_factor": 1.5,          # multiplier between retry delays
}

# Default JWT secret for development setups; override with JWT_SECRET
DEFAULT_JWT_SECRET = "promptp2p-development-secret-change-me"
JWT_ALGORITHM = "HS256"
SESSION_TTL_SECONDS = 24 * 60 * 60

# Text generation backend used by the processor
DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "llama3"
GENERATE_TIMEOUT = 30.0            # seconds per generation

# Rate limiting defaults
DEFAULT_MAX_REQUESTS = 10           # requests per window
DEFAULT_RESET_INTERVAL_MINUTE = 1   # window length in minutes


def _env_int(name: str, default: int) -> int:
    """Read an integer from the environment, falling back on bad values."""
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={value!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={value!r}, using {default}")
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    value = os.environ.get(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class RateLimitConfig:
    """Per-user fixed window rate limit."""
    max_requests: int = DEFAULT_MAX_REQUESTS
    reset_interval_minutes: int = DEFAULT_RESET_INTERVAL_MINUTE

    @property
    def reset_interval_ms(self) -> int:
        return self.reset_interval_minutes * 60 * 1000

    @classmethod
    def from_env(cls) -> "RateLimitConfig":
        return cls(
            max_requests=_env_int("MAX_REQUESTS_PER_INTERVAL", DEFAULT_MAX_REQUESTS),
            reset_interval_minutes=_env_int("RESET_INTERVAL_MINUTE", DEFAULT_RESET_INTERVAL_MINUTE),
        )


@dataclass
class TransportConfig:
    """Settings for the libp2p-backed transport."""
    listen_port: int = DEFAULT_PORT
    bootstrap_peers: List[str] = field(default_factory=lambda: list(BOOTSTRAP_PEERS))
    request_timeout: float = TRANSPORT_PARAMS["request_timeout"]
    announce_interval: float = TRANSPORT_PARAMS["announce_interval"]
    announce_ttl: int = TRANSPORT_PARAMS["announce_ttl"]
    rendezvous_is_server: bool = False
    key_seed: Optional[bytes] = None

    @classmethod
    def from_env(cls) -> "TransportConfig":
        return cls(
            listen_port=_env_int("PROMPTP2P_LISTEN_PORT", DEFAULT_PORT),
            bootstrap_peers=_env_list("PROMPTP2P_BOOTSTRAP_PEERS", BOOTSTRAP_PEERS),
            request_timeout=_env_float("PROMPTP2P_REQUEST_TIMEOUT", TRANSPORT_PARAMS["request_timeout"]),
            announce_interval=_env_float("PROMPTP2P_ANNOUNCE_INTERVAL", TRANSPORT_PARAMS["announce_interval"]),
            rendezvous_is_server=os.environ.get("PROMPTP2P_RENDEZVOUS_SERVER", "").lower() in ("1", "true", "yes"),
        )


@dataclass
class ServiceConfig:
    """Settings shared by every worker that serves RPC methods on a topic."""
    service_name: str = GATEWAY_TOPIC
    service_topic: str = GATEWAY_TOPIC
    dependent_topics: Tuple[str, ...] = ()
    metrics_host: str = "127.0.0.1"
    metrics_port: int = DEFAULT_METRICS_PORT
    enable_metrics_server: bool = True

    @staticmethod
    def _metrics_env(default_port: int) -> dict:
        return {
            "metrics_host": os.environ.get("PROMPTP2P_METRICS_HOST", "127.0.0.1"),
            "metrics_port": _env_int("PROMPTP2P_METRICS_PORT", default_port),
        }


@dataclass
class GatewayConfig(ServiceConfig):
    """
    Gateway worker configuration.

    Usage:
        config = GatewayConfig.from_env()
        worker = GatewayWorker(transport, config=config)
    """
    dependent_topics: Tuple[str, ...] = DEPENDENT_TOPICS
    jwt_secret: str = DEFAULT_JWT_SECRET
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        return cls(
            jwt_secret=os.environ.get("JWT_SECRET") or DEFAULT_JWT_SECRET,
            rate_limit=RateLimitConfig.from_env(),
            **cls._metrics_env(DEFAULT_METRICS_PORT),
        )


@dataclass
class AuthConfig(ServiceConfig):
    """Auth service configuration. jwt_secret must match the gateway's."""
    service_name: str = AUTH_TOPIC
    service_topic: str = AUTH_TOPIC
    metrics_port: int = AUTH_METRICS_PORT
    jwt_secret: str = DEFAULT_JWT_SECRET
    token_ttl: int = SESSION_TTL_SECONDS

    @classmethod
    def from_env(cls) -> "AuthConfig":
        return cls(
            jwt_secret=os.environ.get("JWT_SECRET") or DEFAULT_JWT_SECRET,
            token_ttl=_env_int("PROMPTP2P_TOKEN_TTL", SESSION_TTL_SECONDS),
            **cls._metrics_env(AUTH_METRICS_PORT),
        )


@dataclass
class ProcessorConfig(ServiceConfig):
    """Processor service configuration."""
    service_name: str = PROCESSOR_TOPIC
    service_topic: str = PROCESSOR_TOPIC
    metrics_port: int = PROCESSOR_METRICS_PORT
    ollama_url: str = DEFAULT_OLLAMA_URL
    model: str = DEFAULT_OLLAMA_MODEL
    generate_timeout: float = GENERATE_TIMEOUT

    @classmethod
    def from_env(cls) -> "ProcessorConfig":
        return cls(
            ollama_url=os.environ.get("OLLAMA_URL") or DEFAULT_OLLAMA_URL,
            model=os.environ.get("OLLAMA_MODEL") or DEFAULT_OLLAMA_MODEL,
            generate_timeout=_env_float("PROMPTP2P_GENERATE_TIMEOUT", GENERATE_TIMEOUT),
            **cls._metrics_env(PROCESSOR_METRICS_PORT),
        )


@dataclass
class ClientConfig:
    """Client worker configuration."""
    gateway_topic: str = GATEWAY_TOPIC

    @classmethod
    def from_env(cls) -> "ClientConfig":
        return cls(gateway_topic=os.environ.get("PROMPTP2P_GATEWAY_TOPIC", GATEWAY_TOPIC))


def get_log_level(default: str = "INFO") -> int:
    """Resolve PROMPTP2P_LOG_LEVEL to a logging level."""
    name = os.environ.get("PROMPTP2P_LOG_LEVEL", default).upper()
    return getattr(logging, name, logging.INFO)
