"""
promptp2p/transport/

Overlay transports: topic announce/lookup plus RPC between peers.

- Transport: abstract base with the retrying topic request
- MemoryTransport: in-process overlay for local runs and tests
- Libp2pTransport: py-libp2p host with Rendezvous topic discovery
"""

from .base import RpcListener, Transport, is_retryable_error, retry_delay
from .errors import (
    ChannelClosedError,
    FacilityNotAvailableError,
    RemoteError,
    RequestTimeoutError,
    TopicLookupEmptyError,
    TransportError,
    UnknownMethodError,
)
from .memory import MemoryOverlay, MemoryTransport
from .libp2p_transport import Libp2pTransport
from .rendezvous import TopicDirectory

__all__ = [
    "RpcListener",
    "Transport",
    "is_retryable_error",
    "retry_delay",
    "ChannelClosedError",
    "FacilityNotAvailableError",
    "RemoteError",
    "RequestTimeoutError",
    "TopicLookupEmptyError",
    "TransportError",
    "UnknownMethodError",
    "MemoryOverlay",
    "MemoryTransport",
    "Libp2pTransport",
    "TopicDirectory",
]
