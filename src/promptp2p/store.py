"""
promptp2p/store.py

Key/value persistence capability used by the gateway (rate limit windows).

Values are JSON-compatible objects grouped by namespace. MemoryStore keeps
them in process; any other backend only needs get/put/delete.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import trio

logger = logging.getLogger("promptp2p.store")


class Store(ABC):
    """Abstract async key/value store."""

    @abstractmethod
    async def get(self, namespace: str, key: str) -> Optional[Any]:
        """Get a value, or None if missing."""
        pass

    @abstractmethod
    async def put(self, namespace: str, key: str, value: Any, ttl: int = 0) -> bool:
        """Store a value with an optional TTL in seconds."""
        pass

    @abstractmethod
    async def delete(self, namespace: str, key: str) -> bool:
        pass


class MemoryStore(Store):
    """
    In-memory store.

    Values are copied through JSON on the way in and out, so callers never
    share mutable state with the store and non-JSON values fail on put().
    """

    def __init__(self):
        # (namespace, key) -> (serialized value, expires_at)
        self._data: Dict[Tuple[str, str], Tuple[str, float]] = {}

    async def get(self, namespace: str, key: str) -> Optional[Any]:
        await trio.lowlevel.checkpoint()
        entry = self._data.get((namespace, key))
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at and time.time() >= expires_at:
            del self._data[(namespace, key)]
            return None
        return json.loads(value)

    async def put(self, namespace: str, key: str, value: Any, ttl: int = 0) -> bool:
        await trio.lowlevel.checkpoint()
        expires_at = time.time() + ttl if ttl > 0 else 0
        self._data[(namespace, key)] = (json.dumps(value), expires_at)
        return True

    async def delete(self, namespace: str, key: str) -> bool:
        await trio.lowlevel.checkpoint()
        return self._data.pop((namespace, key), None) is not None

    def keys(self, namespace: str) -> List[str]:
        return [k for (ns, k) in self._data if ns == namespace]
