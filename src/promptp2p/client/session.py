"""
promptp2p/client/session.py

Client session credential and the calls that change it.

SessionState belongs to exactly one client instance. Only a successful
login (success is True and a non-empty key) or an explicit set_token()
installs a credential; only logout() clears it.
"""

import logging
from typing import Any, Dict, Optional

from ..config import GATEWAY_TOPIC, METHOD_LOGIN, METHOD_VERIFY_SESSION
from ..protocol.envelope import token_preview

logger = logging.getLogger("promptp2p.client.session")


class SessionState:
    """Holds the session credential of one client."""

    def __init__(self, token: Optional[str] = None):
        self._token = token or None

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def has_token(self) -> bool:
        return bool(self._token)

    def set(self, token: str) -> None:
        self._token = token

    def clear(self) -> bool:
        """Clear the credential; returns whether one was held."""
        had_token = bool(self._token)
        self._token = None
        return had_token

    def __repr__(self) -> str:
        return f"SessionState(token={token_preview(self._token)})"


class SessionStore:
    """
    Login, logout and verification on top of an AuthenticatedRequestClient.

    Usage:
        session = SessionState()
        requests = AuthenticatedRequestClient(transport, session)
        store = SessionStore(requests, session)

        await store.login("a@b.com", "pw")
        result = await store.verify_session()
    """

    def __init__(self, requests, session: SessionState, gateway_topic: str = GATEWAY_TOPIC):
        self.requests = requests
        self.session = session
        self.gateway_topic = gateway_topic

    async def login(self, email: str, password: str) -> Any:
        """
        Log in and keep the returned key on success.

        A failed or key-less response leaves the current credential as is.
        Transport errors propagate.
        """
        result = await self.requests.call(
            self.gateway_topic,
            METHOD_LOGIN,
            {"email": email, "password": password},
        )

        if isinstance(result, dict) and result.get("success") is True:
            key = result.get("key")
            if isinstance(key, str) and key:
                self.session.set(key)
                logger.info(
                    f"Session key stored for {email}: tokenPreview={token_preview(key)} "
                    f"tokenLength={len(key)}"
                )
            else:
                logger.warning(f"Login for {email} succeeded without a session key")
        else:
            logger.info(f"Login for {email} was not successful, session unchanged")

        return result

    def logout(self) -> Dict[str, Any]:
        if self.session.clear():
            logger.info("Session key cleared")
            return {"success": True, "message": "Logged out successfully"}
        return {"success": False, "message": "No active session to logout"}

    def get_token(self) -> Dict[str, Any]:
        token = self.session.token
        if token:
            return {
                "success": True,
                "token": token,
                "message": "API token retrieved successfully",
            }
        return {"success": False, "message": "No active session - please login first"}

    def set_token(self, token: Optional[str]) -> Dict[str, Any]:
        """Install a token obtained elsewhere, e.g. copied from the web UI."""
        if not isinstance(token, str) or not token.strip():
            return {"success": False, "message": "Token must be a non-empty string"}

        token = token.strip()
        self.session.set(token)
        logger.info(f"Session key set manually: tokenPreview={token_preview(token)}")
        return {"success": True, "message": "API token set successfully"}

    async def verify_session(self) -> Dict[str, Any]:
        """
        Ask the gateway whether the current credential is valid.

        Never raises: no credential, a transport failure and an invalid
        session all come back as valid=False.
        """
        if not self.session.has_token:
            return {"success": False, "valid": False, "message": "No active session"}

        try:
            result = await self.requests.call(self.gateway_topic, METHOD_VERIFY_SESSION, {})
        except Exception as e:
            logger.warning(f"Session verification failed: {e}")
            return {"success": False, "valid": False, "message": "Session verification failed"}

        valid = isinstance(result, dict) and bool(result.get("valid"))
        logger.info(f"Session verification result: {'VALID' if valid else 'INVALID'}")
        return result
