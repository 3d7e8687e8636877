"""
promptp2p/services/

The services the gateway depends on: auth (register, login) and the
prompt processor.
"""

from .auth import AUTH_HANDLERS, AuthWorker, PasswordHasher
from .processor import GenerationError, OllamaGenerator, ProcessorWorker

__all__ = [
    "AUTH_HANDLERS",
    "AuthWorker",
    "PasswordHasher",
    "GenerationError",
    "OllamaGenerator",
    "ProcessorWorker",
]
