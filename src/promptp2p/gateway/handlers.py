"""
promptp2p/gateway/handlers.py

Business handlers behind the gateway RPC methods.

Every handler has the signature handler(gateway, envelope) and returns a
response dict. Failures of the downstream services are turned into
response dicts here; the dispatcher only measures.

The gateway object passed in must provide:
- config.jwt_secret
- rate_limiter (RateLimiter)
- request_dependent(topic, method, data) (coroutine)
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt

from ..config import (
    AUTH_TOPIC,
    JWT_ALGORITHM,
    METHOD_LOGIN,
    METHOD_PROCESS_PROMPT,
    METHOD_REGISTER,
    METHOD_VERIFY_SESSION,
    PROCESSOR_METHOD,
    PROCESSOR_TOPIC,
    SESSION_TTL_SECONDS,
)
from ..protocol.envelope import extract_request_data, requires_auth, token_preview

logger = logging.getLogger("promptp2p.gateway.handlers")

UNAUTHORIZED_MESSAGE = "Unauthorized: Invalid or expired token"


def _request_id() -> str:
    return uuid.uuid4().hex[:9]


def _preview(text: str, limit: int = 200) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


# ========== Authentication ==========

@dataclass
class AuthResult:
    """Outcome of validate_auth_key."""
    is_valid: bool
    skip_auth: bool = False
    claims: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None

    @property
    def email(self) -> Optional[str]:
        return (self.claims or {}).get("email")


def issue_session_token(
    email: str,
    secret: str,
    ttl: int = SESSION_TTL_SECONDS,
    role: str = "user",
) -> str:
    """Sign a session token for a user."""
    now = int(time.time())
    claims = {"email": email, "role": role, "iat": now, "exp": now + ttl}
    return jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)


def decode_session_token(token: str, secret: str) -> Dict[str, Any]:
    """
    Verify a session token and return its claims.

    Raises:
        jwt.InvalidTokenError: bad signature, malformed or expired token
    """
    return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])


def _unauthorized(method: str) -> Dict[str, Any]:
    return {
        "success": False,
        "status": 401,
        "message": UNAUTHORIZED_MESSAGE,
        "method": method,
    }


def validate_auth_key(key: Optional[str], method: str, secret: str, request_id: str = "-") -> AuthResult:
    """Check the session credential of a request to a protected method."""
    if not requires_auth(method):
        logger.debug(f"[{request_id}] Auth validation skipped for exempt method {method}")
        return AuthResult(is_valid=True, skip_auth=True)

    if not key:
        logger.warning(f"[{request_id}] No auth token found for protected method {method}")
        return AuthResult(is_valid=False, error=_unauthorized(method))

    try:
        claims = decode_session_token(key, secret)
    except jwt.InvalidTokenError as e:
        logger.warning(
            f"[{request_id}] Token verification failed for {method}: {e} "
            f"tokenPreview={token_preview(key)}"
        )
        return AuthResult(is_valid=False, error=_unauthorized(method))

    logger.debug(
        f"[{request_id}] Token verified for {method}: email={claims.get('email')} "
        f"role={claims.get('role')}"
    )
    return AuthResult(is_valid=True, claims=claims)


def categorize_gateway_error(error: Optional[BaseException]) -> str:
    """Coarse category of a processPrompt failure, for logs."""
    message = str(error) if error is not None else ""
    if not message:
        return "UNKNOWN"

    if "CHANNEL_CLOSED" in message:
        return "PROCESSOR_CONNECTION_LOST"
    if "ERR_TOPIC_LOOKUP_EMPTY" in message:
        return "PROCESSOR_NOT_FOUND"
    if "ETIMEDOUT" in message:
        return "PROCESSOR_TIMEOUT"
    if "ECONNREFUSED" in message:
        return "PROCESSOR_REFUSED"
    if "Invalid request format" in message:
        return "INVALID_REQUEST_FORMAT"
    if "Unauthorized" in message:
        return "AUTH_FAILED"
    return "UNKNOWN_PROCESSOR_ERROR"


# ========== Handlers ==========

async def process_prompt(gateway, envelope: Any) -> Dict[str, Any]:
    """Authenticate, rate-limit and forward a prompt to the processor."""
    request_id = _request_id()
    logger.info(f"[{request_id}] Processing prompt request")

    try:
        data, key = extract_request_data(envelope)

        auth = validate_auth_key(key, METHOD_PROCESS_PROMPT, gateway.config.jwt_secret, request_id)
        if not auth.is_valid:
            logger.info(f"[{request_id}] processPrompt rejected: authentication failed")
            return auth.error

        rate_limit_info = None
        if not auth.skip_auth and auth.email:
            limit = await gateway.rate_limiter.check_rate_limit(auth.email)
            if not limit["allowed"]:
                logger.warning(f"[{request_id}] Rate limit exceeded for {auth.email}")
                return {k: v for k, v in limit.items() if k != "allowed"}
            rate_limit_info = limit.get("rateLimitInfo")

        prompt = data.get("prompt")
        if not isinstance(prompt, str):
            logger.error(f"[{request_id}] Invalid input for processPrompt: prompt is {type(prompt).__name__}")
            raise ValueError("Invalid input: expected { prompt: string }")

        logger.info(
            f"[{request_id}] Forwarding to {PROCESSOR_TOPIC}.{PROCESSOR_METHOD}: "
            f"user={auth.email or 'anonymous'} promptLength={len(prompt)} "
            f"prompt={_preview(prompt)!r}"
        )

        start = time.perf_counter()
        result = await gateway.request_dependent(PROCESSOR_TOPIC, PROCESSOR_METHOD, data)
        duration_ms = int((time.perf_counter() - start) * 1000)

        if isinstance(result, dict):
            result = dict(result)
            if rate_limit_info:
                result["rateLimitInfo"] = rate_limit_info
            response = result.get("response")
            logger.info(
                f"[{request_id}] Processor replied in {duration_ms}ms: "
                f"responseLength={len(response) if isinstance(response, str) else 0} "
                f"hasError={bool(result.get('error'))}"
            )
        return result

    except Exception as e:
        logger.error(
            f"[{request_id}] Error processing prompt request: {e} "
            f"category={categorize_gateway_error(e)}"
        )
        return {"error": True, "message": str(e), "requestId": request_id}


async def _forward_to_auth(gateway, envelope: Any, method: str) -> Dict[str, Any]:
    request_id = _request_id()
    logger.info(f"[{request_id}] Processing {method} request")

    try:
        data, _ = extract_request_data(envelope)
        result = await gateway.request_dependent(AUTH_TOPIC, method, data)

        success = isinstance(result, dict) and bool(result.get("success"))
        logger.info(f"[{request_id}] {method} request completed: success={success}")

        if method == METHOD_LOGIN and success and result.get("email"):
            status = await gateway.rate_limiter.get_rate_limit_status(result["email"])
            if status:
                result = dict(result, rateLimitInfo=status)

        return result

    except Exception as e:
        logger.error(f"[{request_id}] Error processing {method} request: {e}")
        return {
            "success": False,
            "status": 500,
            "message": str(e),
            "requestId": request_id,
        }


async def register(gateway, envelope: Any) -> Dict[str, Any]:
    """Forward a registration to the auth service."""
    return await _forward_to_auth(gateway, envelope, METHOD_REGISTER)


async def login(gateway, envelope: Any) -> Dict[str, Any]:
    """Forward a login to the auth service and attach the user's rate limit."""
    return await _forward_to_auth(gateway, envelope, METHOD_LOGIN)


async def verify_session(gateway, envelope: Any) -> Dict[str, Any]:
    request_id = _request_id()
    logger.info(f"[{request_id}] Verifying session")

    try:
        _, key = extract_request_data(envelope)

        if not key:
            return {
                "success": False,
                "status": 401,
                "valid": False,
                "message": "No session token provided",
            }

        try:
            claims = decode_session_token(key, gateway.config.jwt_secret)
        except jwt.InvalidTokenError as e:
            logger.debug(f"[{request_id}] Session token rejected: {e}")
            return {
                "success": False,
                "status": 401,
                "valid": False,
                "message": "Session is invalid or expired",
            }

        email = claims.get("email")
        logger.info(f"[{request_id}] Session verification successful: user={email}")

        response = {
            "success": True,
            "status": 200,
            "valid": True,
            "email": email,
            "message": "Session is valid",
        }
        status = await gateway.rate_limiter.get_rate_limit_status(email)
        if status:
            response["rateLimitInfo"] = status
        return response

    except Exception as e:
        logger.error(f"[{request_id}] Error processing verifySession request: {e}")
        return {
            "success": False,
            "status": 500,
            "valid": False,
            "message": "Session verification failed",
            "requestId": request_id,
        }


# Business handlers served by the gateway, by RPC method
BUSINESS_HANDLERS = {
    METHOD_PROCESS_PROMPT: process_prompt,
    METHOD_REGISTER: register,
    METHOD_LOGIN: login,
    METHOD_VERIFY_SESSION: verify_session,
}
