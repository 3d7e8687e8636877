"""
promptp2p/transport/errors.py

Exceptions raised by transports and worker startup.

Each transport failure carries a sentinel substring in its message
(ERR_TOPIC_LOOKUP_EMPTY, UNKNOWN_METHOD, CHANNEL_CLOSED, ETIMEDOUT) so that
callers can classify errors from any transport by message alone.
"""

from typing import Optional


class TransportError(Exception):
    """Base class for overlay transport failures."""


class TopicLookupEmptyError(TransportError):
    """No peer is currently announced under the topic."""

    def __init__(self, topic: Optional[str] = None):
        self.topic = topic
        message = "ERR_TOPIC_LOOKUP_EMPTY"
        if topic:
            message = f"{message}: {topic}"
        super().__init__(message)


class UnknownMethodError(TransportError):
    """The remote peer has no handler registered for the method."""

    def __init__(self, method: Optional[str] = None):
        self.method = method
        message = "UNKNOWN_METHOD"
        if method:
            message = f"{message}: {method}"
        super().__init__(message)


class ChannelClosedError(TransportError):
    """The connection to the peer dropped before a response arrived."""

    def __init__(self, detail: str = ""):
        message = "CHANNEL_CLOSED"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class RequestTimeoutError(TransportError):
    """The peer accepted the connection but did not answer in time."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"ETIMEDOUT: request timed out after {timeout}s")


class RemoteError(TransportError):
    """The remote handler raised; the message is the remote error text."""


class FacilityNotAvailableError(RuntimeError):
    """A required facility (the network transport) was not provided."""

    def __init__(self, facility: str = "net"):
        self.facility = facility
        super().__init__(f"{facility} facility not available")
