"""
promptp2p/client/request.py

Authenticated topic requests from a client to the gateway.

Each call reads the session credential once, wraps the payload in the
request envelope and hands it to Transport.request with the fixed
interactive retry policy (3 attempts, 200 ms base delay). Results and
errors are passed through unchanged.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..config import INTERACTIVE_BASE_DELAY_MS, INTERACTIVE_MAX_RETRIES
from ..protocol.classifier import ErrorCause, classify
from ..protocol.envelope import build_envelope
from ..protocol.messages import payload_size

logger = logging.getLogger("promptp2p.client.request")


@dataclass
class RequestAttempt:
    """Outcome of one authenticated call, for observers only."""
    request_id: str
    topic: str
    method: str
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    success: Optional[bool] = None
    cause: Optional[ErrorCause] = None
    error: Optional[str] = None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at) * 1000)

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "topic": self.topic,
            "method": self.method,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "cause": self.cause.value if self.cause else None,
            "error": self.error,
        }


class AuthenticatedRequestClient:
    """
    Sends enveloped requests through a transport.

    Usage:
        client = AuthenticatedRequestClient(transport, session)
        result = await client.call("gateway", "processPrompt", {"prompt": "hi"})
    """

    def __init__(
        self,
        transport,
        session,
        on_attempt: Optional[Callable[[RequestAttempt], None]] = None,
    ):
        """
        Args:
            transport: Transport used for topic requests
            session: SessionState holding the credential
            on_attempt: Optional observer called with each RequestAttempt
        """
        self.transport = transport
        self.session = session
        self.on_attempt = on_attempt
        # Most recently finished call; read it before the next checkpoint
        self.last_attempt: Optional[RequestAttempt] = None

    async def call(self, topic: str, method: str, data: Any) -> Any:
        """
        Send one authenticated request.

        Returns:
            The transport result, unchanged

        Raises:
            Whatever the transport raised, unchanged
        """
        envelope = build_envelope(method, data, self.session.token)

        request_id = uuid.uuid4().hex[:9]
        attempt = RequestAttempt(request_id=request_id, topic=topic, method=method)

        has_key = bool(envelope.get("meta", {}).get("key"))
        logger.info(
            f"[{request_id}] Starting topic request: {topic}.{method} "
            f"hasAuthKey={has_key} payloadSize={payload_size(envelope)}"
        )

        try:
            result = await self.transport.request(
                topic,
                method,
                envelope,
                {},
                INTERACTIVE_MAX_RETRIES,
                INTERACTIVE_BASE_DELAY_MS,
            )
        except Exception as e:
            attempt.finished_at = time.time()
            attempt.success = False
            attempt.cause = classify(e)
            attempt.error = str(e)
            logger.error(
                f"[{request_id}] Topic request failed after retries: {topic}.{method} "
                f"error={e}"
            )
            self._emit(attempt)
            raise

        attempt.finished_at = time.time()
        attempt.success = True
        logger.info(
            f"[{request_id}] Topic request succeeded: {topic}.{method} "
            f"duration={attempt.duration_ms}ms responseSize={payload_size(result)}"
        )
        self._emit(attempt)
        return result

    def _emit(self, attempt: RequestAttempt) -> None:
        self.last_attempt = attempt
        if self.on_attempt is None:
            return
        try:
            self.on_attempt(attempt)
        except Exception as e:
            logger.warning(f"Request attempt observer failed: {e}")
