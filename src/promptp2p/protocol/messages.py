"""
promptp2p/protocol/messages.py

Message serialization for RPC frames exchanged between peers.
"""

import base64
import json
import logging
from datetime import datetime
from typing import Any, Dict

logger = logging.getLogger("promptp2p.protocol.messages")

# Prefix marking an error reply in place of a result
RPC_ERROR_PREFIX = "[HRPC_ERR]="


def serialize_message(message: Any) -> bytes:
    """
    Serialize a message for transmission between peers.

    Handles special types:
    - datetime -> ISO format string with marker
    - bytes -> base64 encoded with marker
    - set -> list with marker

    Args:
        message: Message to serialize (dict, list, primitive or None)

    Returns:
        UTF-8 encoded JSON bytes
    """
    return json.dumps(message, cls=PromptEncoder).encode("utf-8")


def deserialize_message(data: bytes) -> Any:
    """
    Deserialize a message received from a peer.

    Args:
        data: UTF-8 encoded JSON bytes

    Returns:
        Deserialized message
    """
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8")
    return json.loads(data, object_hook=prompt_decoder)


def payload_size(message: Any) -> int:
    """Size in bytes of a message once serialized; 0 if it cannot be."""
    try:
        return len(serialize_message(message))
    except (TypeError, ValueError):
        return 0


class PromptEncoder(json.JSONEncoder):
    """Custom JSON encoder for non-JSON payload types."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return {
                "__promptp2p_type__": "datetime",
                "value": obj.isoformat(),
            }

        if isinstance(obj, bytes):
            return {
                "__promptp2p_type__": "bytes",
                "value": base64.b64encode(obj).decode("ascii"),
            }

        if isinstance(obj, set):
            return {
                "__promptp2p_type__": "set",
                "value": list(obj),
            }

        return super().default(obj)


def prompt_decoder(obj: dict) -> Any:
    """JSON decoder hook reversing PromptEncoder."""
    if "__promptp2p_type__" not in obj:
        return obj

    type_marker = obj["__promptp2p_type__"]

    if type_marker == "datetime":
        return datetime.fromisoformat(obj["value"])

    if type_marker == "bytes":
        return base64.b64decode(obj["value"])

    if type_marker == "set":
        return set(obj["value"])

    logger.warning(f"Unknown type marker: {type_marker}")
    return obj


# ========== RPC frames ==========

def make_request_frame(method: str, payload: Any) -> Dict[str, Any]:
    """Build the frame sent to a peer for one RPC call."""
    return {"method": method, "payload": payload}


def make_reply_frame(result: Any) -> Dict[str, Any]:
    return {"ok": True, "result": result}


def make_error_frame(message: str) -> Dict[str, Any]:
    """Error reply; the text keeps the remote error message verbatim."""
    return {"ok": False, "error": f"{RPC_ERROR_PREFIX}{message}"}


def unwrap_error(text: str) -> str:
    """Strip the error prefix from an error reply."""
    if text.startswith(RPC_ERROR_PREFIX):
        return text[len(RPC_ERROR_PREFIX):]
    return text


# ========== Stream framing ==========

# Frames on libp2p streams are prefixed with a 4-byte big-endian length
FRAME_HEADER_SIZE = 4
MAX_FRAME_SIZE = 4 * 1024 * 1024


def pack_frame(message: Any) -> bytes:
    """Serialize a message and prefix it with its length."""
    body = serialize_message(message)
    if len(body) > MAX_FRAME_SIZE:
        raise ValueError(f"Frame too large: {len(body)} bytes (max {MAX_FRAME_SIZE})")
    return len(body).to_bytes(FRAME_HEADER_SIZE, "big") + body


def frame_length(header: bytes) -> int:
    """Body length announced by a frame header."""
    if len(header) != FRAME_HEADER_SIZE:
        raise ValueError(f"Incomplete frame header: {len(header)} bytes")
    length = int.from_bytes(header, "big")
    if length > MAX_FRAME_SIZE:
        raise ValueError(f"Frame too large: {length} bytes (max {MAX_FRAME_SIZE})")
    return length
