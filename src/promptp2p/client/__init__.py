"""
promptp2p/client/

Client side: session credential, authenticated requests, client worker.
"""

from .request import AuthenticatedRequestClient, RequestAttempt
from .session import SessionState, SessionStore
from .worker import ClientWorker

__all__ = [
    "AuthenticatedRequestClient",
    "RequestAttempt",
    "SessionState",
    "SessionStore",
    "ClientWorker",
]
