"""
promptp2p/protocol/

Request envelope, wire codec and error classification shared by clients
and the gateway.
"""

from .messages import serialize_message, deserialize_message, RPC_ERROR_PREFIX
from .envelope import (
    EXEMPT_METHODS,
    build_envelope,
    extract_request_data,
    requires_auth,
    token_preview,
)
from .classifier import (
    ErrorCause,
    StaleAnnouncementHeuristic,
    classify,
    hint_for,
    is_stale_announcement,
)

__all__ = [
    "serialize_message",
    "deserialize_message",
    "RPC_ERROR_PREFIX",
    "EXEMPT_METHODS",
    "build_envelope",
    "extract_request_data",
    "requires_auth",
    "token_preview",
    "ErrorCause",
    "StaleAnnouncementHeuristic",
    "classify",
    "hint_for",
    "is_stale_announcement",
]
