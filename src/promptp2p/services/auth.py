"""
promptp2p/services/auth.py

Auth service: user registration and login on the "auth" topic.

Users live in the "users" store namespace, keyed by email, with an
Argon2id password hash. A successful login returns a session token signed
with the shared JWT secret, which the gateway verifies on every
authenticated call.

Business failures are returned as {success: False, status, message}
dicts and never raised.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import trio
from argon2 import PasswordHasher as Argon2Hasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from ..config import DEFAULT_JWT_SECRET, METHOD_LOGIN, METHOD_REGISTER, AuthConfig
from ..gateway.handlers import issue_session_token
from ..gateway.service import CompletionCallback, ServiceWorker
from ..metrics import GatewayMetrics
from ..store import Store

logger = logging.getLogger("promptp2p.services.auth")

USERS_NAMESPACE = "users"
STORE_UNAVAILABLE = "Store facility not available"


class PasswordHasher:
    """Argon2id hashing; keyword arguments are passed to argon2's hasher."""

    def __init__(self, **params):
        self._hasher = Argon2Hasher(**params)

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, password_hash: str, password: str) -> bool:
        try:
            return self._hasher.verify(password_hash, password)
        except (VerifyMismatchError, InvalidHashError, VerificationError):
            return False


def _request_id() -> str:
    return uuid.uuid4().hex[:9]


def _credentials(data: Any) -> Tuple[Optional[str], Optional[str]]:
    """Email and password from {email, password} or an enveloped {data: {...}}."""
    if isinstance(data, dict) and isinstance(data.get("data"), dict):
        data = data["data"]
    if not isinstance(data, dict):
        raise ValueError("Invalid request format: expected object with data")
    return data.get("email"), data.get("password")


def _failure(status: int, message: str, request_id: str) -> Dict[str, Any]:
    return {"success": False, "status": status, "message": message, "requestId": request_id}


def _storage_failure(method: str, email: Optional[str], error: Exception, request_id: str) -> Dict[str, Any]:
    text = str(error)
    if STORE_UNAVAILABLE in text:
        logger.error(f"[{request_id}] Store not available during {method}: email={email}")
        return _failure(503, "Authentication service temporarily unavailable - store not ready", request_id)
    if "CHANNEL_CLOSED" in text:
        logger.error(f"[{request_id}] Channel closed during {method}: email={email} error={text}")
        return _failure(503, "Authentication service temporarily unavailable - connection closed", request_id)
    logger.error(f"[{request_id}] {method} failed with unexpected error: email={email} {type(error).__name__}: {text}")
    return _failure(500, text, request_id)


def _users(worker) -> Store:
    if worker.store is None:
        raise RuntimeError(STORE_UNAVAILABLE)
    return worker.store


async def register(worker, data: Any) -> Dict[str, Any]:
    """Create a user with a hashed password; 409 if the email is taken."""
    request_id = _request_id()
    email = None

    try:
        email, password = _credentials(data)
        if not email or not password:
            return _failure(400, "Email and password are required", request_id)

        logger.info(f"[{request_id}] register received: email={email}")
        users = _users(worker)

        if await users.get(USERS_NAMESPACE, email):
            logger.info(f"[{request_id}] Registration failed, user already exists: email={email}")
            return _failure(409, "User already exists", request_id)

        password_hash = await trio.to_thread.run_sync(worker.hasher.hash, password)
        await users.put(USERS_NAMESPACE, email, {
            "email": email,
            "passwordHash": password_hash,
            "createdAt": datetime.now(timezone.utc).isoformat(),
        })

        logger.info(f"[{request_id}] User registered: email={email}")
        return {
            "success": True,
            "status": 201,
            "message": "User registered successfully",
            "email": email,
        }

    except Exception as e:
        return _storage_failure(METHOD_REGISTER, email, e, request_id)


async def login(worker, data: Any) -> Dict[str, Any]:
    """Check a password and issue a session token."""
    request_id = _request_id()
    email = None

    try:
        email, password = _credentials(data)
        if not email or not password:
            return _failure(400, "Email and password are required", request_id)

        logger.info(f"[{request_id}] login received: email={email}")
        user = await _users(worker).get(USERS_NAMESPACE, email)

        if not user:
            logger.info(f"[{request_id}] Login failed, user not found: email={email}")
            return _failure(401, "Invalid credentials", request_id)

        if not user.get("passwordHash"):
            raise ValueError("User account is corrupted - no password hash found")

        valid = await trio.to_thread.run_sync(worker.hasher.verify, user["passwordHash"], password)
        if not valid:
            logger.info(f"[{request_id}] Login failed, invalid password: email={email}")
            return _failure(401, "Invalid credentials", request_id)

        token = issue_session_token(email, worker.config.jwt_secret, ttl=worker.config.token_ttl)
        logger.info(f"[{request_id}] User authenticated: email={email} expiresIn={worker.config.token_ttl}s")
        return {"success": True, "status": 200, "email": email, "key": token}

    except Exception as e:
        return _storage_failure(METHOD_LOGIN, email, e, request_id)


AUTH_HANDLERS = {
    METHOD_REGISTER: register,
    METHOD_LOGIN: login,
}


class AuthWorker(ServiceWorker):
    """
    Serves register and login on the auth topic.

    Usage:
        worker = AuthWorker(transport, config=AuthConfig.from_env())
        await worker.start()
    """

    HANDLERS = AUTH_HANDLERS

    def __init__(
        self,
        transport,
        store: Optional[Store] = None,
        config: Optional[AuthConfig] = None,
        metrics: Optional[GatewayMetrics] = None,
        hasher: Optional[PasswordHasher] = None,
    ):
        super().__init__(transport, config or AuthConfig(), store=store, metrics=metrics)
        self.hasher = hasher or PasswordHasher()

    async def start(self, on_complete: Optional[CompletionCallback] = None) -> bool:
        if self.config.jwt_secret == DEFAULT_JWT_SECRET:
            logger.warning("JWT_SECRET not set, tokens are signed with the development default")
        return await super().start(on_complete)
