"""
promptp2p/client/worker.py

Client worker: the object a CLI or bridge drives to talk to the gateway.

Usage:
    worker = ClientWorker(transport)
    await worker.start()

    await worker.login_user("a@b.com", "pw")
    result = await worker.send_request("Hello")
"""

import logging
from typing import Any, Dict, Optional

from ..config import ClientConfig, METHOD_PROCESS_PROMPT, METHOD_REGISTER
from ..protocol.classifier import classify, hint_for
from ..transport.errors import FacilityNotAvailableError
from .request import AuthenticatedRequestClient
from .session import SessionState, SessionStore

logger = logging.getLogger("promptp2p.client.worker")


class ClientWorker:
    """
    Owns one session and the request client bound to it.

    Every worker has its own SessionState, so several workers in one
    process never share credentials.
    """

    def __init__(self, transport, config: Optional[ClientConfig] = None, on_attempt=None):
        self.transport = transport
        self.config = config or ClientConfig()

        self.session = SessionState()
        self.requests = AuthenticatedRequestClient(transport, self.session, on_attempt=on_attempt)
        self.sessions = SessionStore(self.requests, self.session, self.config.gateway_topic)

        self.last_hint: Optional[str] = None
        self._started = False

    @property
    def session_key(self) -> Optional[str]:
        return self.session.token

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """
        Enable topic lookups on the transport.

        Raises:
            FacilityNotAvailableError: no transport was provided
        """
        if self._started:
            logger.warning("Client worker already started")
            return

        if self.transport is None:
            logger.error("Net facility not available")
            raise FacilityNotAvailableError("net")

        self.transport.start_discovery()
        self._started = True
        logger.info("Client worker started")

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        logger.info("Client worker stopped")

    # ========== Requests ==========

    async def send_request(self, prompt: str) -> Any:
        """
        Send a prompt to the gateway.

        On failure the cause is classified, the matching hint is logged under
        the request id of the failed call and kept in last_hint, and the
        original error is re-raised.
        """
        self.last_hint = None
        try:
            return await self.requests.call(
                self.config.gateway_topic,
                METHOD_PROCESS_PROMPT,
                {"prompt": prompt},
            )
        except Exception as e:
            attempt = self.requests.last_attempt
            request_id = attempt.request_id if attempt else "-"
            cause = classify(e)
            self.last_hint = hint_for(cause)
            logger.error(
                f"[{request_id}] {METHOD_PROCESS_PROMPT} failed: cause={cause.value} "
                f"error={e} hint={self.last_hint}"
            )
            raise

    async def register_user(self, email: str, password: str) -> Any:
        return await self.requests.call(
            self.config.gateway_topic,
            METHOD_REGISTER,
            {"email": email, "password": password},
        )

    async def login_user(self, email: str, password: str) -> Any:
        return await self.sessions.login(email, password)

    def logout(self) -> Dict[str, Any]:
        return self.sessions.logout()

    def get_api_token(self) -> Dict[str, Any]:
        return self.sessions.get_token()

    def set_api_token(self, token: str) -> Dict[str, Any]:
        return self.sessions.set_token(token)

    async def verify_session(self) -> Dict[str, Any]:
        return await self.sessions.verify_session()
