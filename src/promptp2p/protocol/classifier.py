"""
promptp2p/protocol/classifier.py

Classification of failed requests into user-facing causes.

Transport errors are matched on their message text, in priority order:

1. ERR_TOPIC_LOOKUP_EMPTY  - nobody announced the topic
2. UNKNOWN_METHOD          - the peer does not serve the method
3. CHANNEL_CLOSED          - connection dropped mid-flight
4. stale announcement      - heuristic, see StaleAnnouncementHeuristic
5. unknown

Classification only selects a hint for the user. It runs after the
transport has exhausted its retries and never changes retry behaviour.
All string matching lives in this module so it can be replaced by
structured error codes.
"""

import logging
from enum import Enum
from typing import Any, Iterable, Optional, Tuple

logger = logging.getLogger("promptp2p.protocol.classifier")


class ErrorCause(Enum):
    """Why a request to the overlay failed."""
    ERR_TOPIC_LOOKUP_EMPTY = "ERR_TOPIC_LOOKUP_EMPTY"
    UNKNOWN_METHOD = "UNKNOWN_METHOD"
    CHANNEL_CLOSED = "CHANNEL_CLOSED"
    STALE_ANNOUNCEMENT = "STALE_ANNOUNCEMENT"
    UNKNOWN = "UNKNOWN"


# Sentinels checked before the heuristic, in priority order
SENTINELS: Tuple[ErrorCause, ...] = (
    ErrorCause.ERR_TOPIC_LOOKUP_EMPTY,
    ErrorCause.UNKNOWN_METHOD,
    ErrorCause.CHANNEL_CLOSED,
)

HINTS = {
    ErrorCause.ERR_TOPIC_LOOKUP_EMPTY: "Make sure the gateway worker is running",
    ErrorCause.UNKNOWN_METHOD: "Gateway method registration may have failed",
    ErrorCause.CHANNEL_CLOSED: (
        "Connection was closed, this may indicate network issues, "
        "service restarts, or stale announcements"
    ),
    ErrorCause.STALE_ANNOUNCEMENT: (
        "This may be a stale announcement. Try waiting a few minutes "
        "or restart the gateway service"
    ),
    ErrorCause.UNKNOWN: "Request failed with an unexpected error",
}


class StaleAnnouncementHeuristic:
    """
    Decides whether an error looks like a peer that was announced but is
    no longer reachable: the lookup found it, but talking to it timed out
    or was reset.

    Usage:
        heuristic = StaleAnnouncementHeuristic(patterns=["ETIMEDOUT"])
        classify(error, heuristic=heuristic)
    """

    DEFAULT_PATTERNS: Tuple[str, ...] = (
        "ETIMEDOUT",
        "timed out",
        "timeout",
        "ECONNRESET",
        "ECONNREFUSED",
        "connection reset",
        "peer not reachable",
    )

    def __init__(self, patterns: Optional[Iterable[str]] = None):
        source = self.DEFAULT_PATTERNS if patterns is None else patterns
        self.patterns: Tuple[str, ...] = tuple(p.lower() for p in source)

    def matches(self, message: str) -> bool:
        lowered = message.lower()
        return any(pattern in lowered for pattern in self.patterns)


DEFAULT_HEURISTIC = StaleAnnouncementHeuristic()


def error_message(error: Any) -> Optional[str]:
    """
    Extract a message from an error-like value.

    Returns None for None and for objects without a usable message.
    """
    if error is None:
        return None
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        message = error.get("message")
        return message if isinstance(message, str) else None
    message = getattr(error, "message", None)
    return message if isinstance(message, str) else None


def classify(
    error: Any,
    heuristic: Optional[StaleAnnouncementHeuristic] = None,
) -> ErrorCause:
    """
    Classify a failed request.

    Args:
        error: Exception (or error-like value) raised by the transport
        heuristic: Stale-announcement test, defaults to DEFAULT_HEURISTIC

    Returns:
        The first matching ErrorCause; UNKNOWN when nothing matches,
        including for None and message-less values.
    """
    message = error_message(error)
    if not message:
        return ErrorCause.UNKNOWN

    for cause in SENTINELS:
        if cause.value in message:
            return cause

    if (heuristic or DEFAULT_HEURISTIC).matches(message):
        return ErrorCause.STALE_ANNOUNCEMENT

    return ErrorCause.UNKNOWN


def is_stale_announcement(
    error: Any,
    heuristic: Optional[StaleAnnouncementHeuristic] = None,
) -> bool:
    """Boolean form of classify() for the stale-announcement cause."""
    return classify(error, heuristic) is ErrorCause.STALE_ANNOUNCEMENT


def hint_for(cause: ErrorCause) -> str:
    """User-facing hint for a cause."""
    return HINTS[cause]
