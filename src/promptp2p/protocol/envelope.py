"""
promptp2p/protocol/envelope.py

Request envelope shared by clients and the gateway.

Every request travels as:

    {"data": <method payload>, "meta": {"key": <session credential>}}

where "meta" is only present for methods that require authentication and
only when the client holds a credential. Authorization is enforced by the
gateway, so a missing credential does not block the request here.

Usage:
    envelope = build_envelope("processPrompt", {"prompt": "hi"}, session.token)
    data, key = extract_request_data(envelope)
"""

import logging
from typing import Any, Dict, FrozenSet, Optional, Tuple

from ..config import METHOD_LOGIN, METHOD_REGISTER

logger = logging.getLogger("promptp2p.protocol.envelope")

# Methods callable without a session credential
EXEMPT_METHODS: FrozenSet[str] = frozenset({METHOD_REGISTER, METHOD_LOGIN})


def requires_auth(method: str) -> bool:
    """Whether a method expects a session credential in meta.key."""
    return method not in EXEMPT_METHODS


def token_preview(token: Optional[str]) -> str:
    """Shortened credential for log lines."""
    if not token:
        return "null"
    return token[:20] + "..."


def build_envelope(method: str, data: Any, credential: Optional[str]) -> Dict[str, Any]:
    """
    Build the request envelope for a method call.

    Args:
        method: RPC method name
        data: Method payload, kept as is (None included)
        credential: Current session credential, if any

    Returns:
        {"data": data} or {"data": data, "meta": {"key": credential}}
    """
    envelope: Dict[str, Any] = {"data": data}

    if not requires_auth(method):
        logger.debug(f"{method} is exempt from auth key requirement")
        return envelope

    if isinstance(credential, str) and credential:
        envelope["meta"] = {"key": credential}
        logger.debug(f"Including auth key for {method}: tokenPreview={token_preview(credential)}")
    else:
        logger.warning(f"No session key available for {method} request")

    return envelope


def extract_request_data(envelope: Any) -> Tuple[Dict[str, Any], Optional[str]]:
    """
    Split an incoming envelope into its payload and credential.

    Raises:
        ValueError: if the envelope is not {data: {...}, meta?: {key}}
    """
    if not isinstance(envelope, dict) or not isinstance(envelope.get("data"), dict):
        raise ValueError(
            'Invalid request format: expected { data: {...}, meta: { key: "..." } }'
        )

    meta = envelope.get("meta")
    key = meta.get("key") if isinstance(meta, dict) else None
    return envelope["data"], key or None
