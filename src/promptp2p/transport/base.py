"""
promptp2p/transport/base.py

Abstract overlay transport.

A transport knows how to:
- serve RPC methods (start_listener / register_handler)
- announce and look up topics on the discovery overlay
- send one request to one peer (request_peer)

On top of those primitives it provides request(), a topic request that
tolerates stale announcements: every attempt does a fresh lookup, tries
each announced peer in turn, and retries connection failures with
exponential backoff.

Usage:
    result = await transport.request(
        "gateway", "processPrompt", envelope, {}, 3, 200
    )
"""

import inspect
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import trio

from ..config import TRANSPORT_PARAMS
from ..protocol.messages import (
    deserialize_message,
    make_error_frame,
    make_reply_frame,
    serialize_message,
    unwrap_error,
)
from .errors import RemoteError, TopicLookupEmptyError, TransportError, UnknownMethodError

logger = logging.getLogger("promptp2p.transport.base")

Handler = Callable[[Any], Any]

# Substrings of errors worth retrying against a fresh lookup
RETRYABLE_PATTERNS = (
    "CHANNEL_CLOSED",
    "channel closed",
    "connection closed",
    "Connection closed",
    "ECONNRESET",
    "ECONNREFUSED",
    "ETIMEDOUT",
    "timeout",
    "Timeout",
)


def is_retryable_error(error: BaseException) -> bool:
    """Whether an error indicates a connection problem a retry may fix."""
    message = str(error) or type(error).__name__
    return any(pattern in message for pattern in RETRYABLE_PATTERNS)


def is_connection_error(error: BaseException) -> bool:
    """Connection errors are the ones that justify trying the next peer."""
    return is_retryable_error(error)


def retry_delay(attempt: int, base_delay_ms: float) -> float:
    """
    Delay in seconds before the given attempt (1-based).

    The first attempt runs immediately; attempt 2 waits base_delay_ms,
    and each later attempt waits backoff_factor times longer.
    """
    if attempt <= 1:
        return 0.0
    factor = TRANSPORT_PARAMS["backoff_factor"]
    return base_delay_ms * (factor ** (attempt - 2)) / 1000.0


class RpcListener:
    """
    Method table for inbound RPC calls.

    Handlers take the decoded request payload and may be plain functions
    or coroutine functions.
    """

    def __init__(self):
        self._handlers: Dict[str, Handler] = {}

    def respond(self, method: str, handler: Handler) -> None:
        """Register (or replace) the handler for a method."""
        self._handlers[method] = handler
        logger.debug(f"Registered RPC method {method}")

    def has_method(self, method: str) -> bool:
        return method in self._handlers

    @property
    def methods(self) -> List[str]:
        return list(self._handlers.keys())

    async def dispatch(self, method: str, payload: Any) -> Any:
        """
        Invoke the handler for a method.

        Raises:
            UnknownMethodError: if nothing is registered for the method
        """
        handler = self._handlers.get(method)
        if handler is None:
            raise UnknownMethodError(method)

        result = handler(payload)
        if inspect.isawaitable(result):
            result = await result
        return result


class Transport(ABC):
    """
    Base class for overlay transports.

    Subclasses implement the peer-level primitives; topic requests with
    retry are provided here.
    """

    def __init__(self):
        self._listener: Optional[RpcListener] = None

    @property
    def listener(self) -> Optional[RpcListener]:
        """The RPC listener, once start_listener() has run."""
        return self._listener

    # ========== Serving ==========

    @abstractmethod
    async def start_listener(self) -> RpcListener:
        """Start accepting inbound RPC calls and return the listener."""

    def register_handler(self, method: str, handler: Handler) -> None:
        """Register an RPC method on the running listener."""
        if self._listener is None:
            raise RuntimeError("RPC listener not started. Call start_listener() first")
        self._listener.respond(method, handler)

    # ========== Discovery ==========

    @abstractmethod
    def start_discovery(self) -> None:
        """Enable topic announce/lookup."""

    @abstractmethod
    async def announce(self, topic: str) -> None:
        """Announce this peer under a topic, refreshed on an interval."""

    @abstractmethod
    async def lookup(self, topic: str, cached: bool = True) -> List[str]:
        """Return the peer ids currently announced under a topic."""

    # ========== Requests ==========

    @abstractmethod
    async def request_peer(
        self,
        peer_id: str,
        method: str,
        payload: Any,
        options: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send one RPC call to one peer and return its result."""

    async def stop(self) -> None:
        """Release transport resources."""

    # ========== Frame handling ==========

    async def _serve_frame(self, data: bytes) -> bytes:
        """
        Answer one serialized request frame with a serialized reply frame.

        Handler errors are returned as error frames carrying the error
        message, so the caller sees the same text the handler raised.
        """
        try:
            frame = deserialize_message(data)
            method = frame["method"]
            payload = frame.get("payload")
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Malformed request frame: {e}")
            return serialize_message(make_error_frame(f"Malformed request frame: {e}"))

        if self._listener is None:
            return serialize_message(make_error_frame(str(UnknownMethodError(method))))

        try:
            result = await self._listener.dispatch(method, payload)
        except Exception as e:
            logger.debug(f"Handler for {method} raised: {type(e).__name__}: {e}")
            return serialize_message(make_error_frame(str(e) or type(e).__name__))

        try:
            return serialize_message(make_reply_frame(result))
        except (TypeError, ValueError) as e:
            logger.error(f"Result of {method} is not serializable: {e}")
            return serialize_message(make_error_frame(f"Unserializable result: {e}"))

    def _decode_reply(self, data: bytes) -> Any:
        """
        Turn a serialized reply frame into a result.

        Raises:
            RemoteError: the remote handler failed
            TransportError: the reply frame is malformed
        """
        try:
            reply = deserialize_message(data)
        except ValueError as e:
            raise TransportError(f"Malformed reply frame: {e}") from e

        if not isinstance(reply, dict) or "ok" not in reply:
            raise TransportError("Malformed reply frame")
        if reply["ok"]:
            return reply.get("result")
        raise RemoteError(unwrap_error(str(reply.get("error", ""))))

    async def request(
        self,
        topic: str,
        method: str,
        envelope: Any,
        options: Optional[Dict[str, Any]] = None,
        max_retries: int = 3,
        base_delay_ms: float = 100,
    ) -> Any:
        """
        Topic request that survives stale announcements.

        Args:
            topic: Topic the target service announces under
            method: RPC method name
            envelope: Request payload
            options: Per-request options (e.g. {"timeout": 10.0})
            max_retries: Total number of attempts
            base_delay_ms: Delay before the second attempt, grows 1.5x after

        Returns:
            The first successful peer response

        Raises:
            The last error, unchanged, once retries are exhausted or the
            error is not retryable.
        """
        options = options if options is not None else {}
        request_id = uuid.uuid4().hex[:9]
        attempts = max(1, int(max_retries))
        last_error: Optional[BaseException] = None

        for attempt in range(1, attempts + 1):
            try:
                delay = retry_delay(attempt, base_delay_ms)
                if delay:
                    await trio.sleep(delay)

                # Always a fresh lookup, cached peers may be stale
                peer_ids = await self.lookup(topic, cached=False)
                if not peer_ids:
                    raise TopicLookupEmptyError(topic)

                for index, peer_id in enumerate(peer_ids):
                    try:
                        result = await self.request_peer(peer_id, method, envelope, options)
                        if attempt > 1 or index > 0:
                            logger.info(
                                f"[{request_id}] {topic}.{method} succeeded on attempt "
                                f"{attempt}, peer {index + 1}/{len(peer_ids)}"
                            )
                        return result
                    except Exception as e:
                        if index < len(peer_ids) - 1 and is_connection_error(e):
                            logger.warning(
                                f"[{request_id}] Peer {index + 1} failed ({e}), trying next peer..."
                            )
                            continue
                        raise

            except Exception as e:
                last_error = e
                retryable = is_retryable_error(e)
                is_last_attempt = attempt == attempts

                if not retryable or is_last_attempt:
                    if retryable:
                        logger.error(
                            f"[{request_id}] {topic}.{method} failed after {attempts} attempts: {e}"
                        )
                    raise

                logger.warning(
                    f"[{request_id}] Attempt {attempt}/{attempts} failed ({e}), retrying..."
                )

        raise last_error or RuntimeError("request: unexpected error state")
