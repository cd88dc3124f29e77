"""
Per-owner invoice list cache.

The cache only speeds things up. ``InvoiceListCache`` logs backend failures
and carries on, so reads and writes never depend on it.
"""

import json
import threading
import time
from dataclasses import dataclass

from .logging_config import get_logger

logger = get_logger("cache")

DEFAULT_TTL_SECONDS = 300


@dataclass
class CacheEntry:
    value: str
    expires_at: float

    def is_expired(self, now):
        return now >= self.expires_at


class MemoryCacheBackend:
    """Thread-safe TTL map used when no shared cache is configured."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.RLock()
        self._entries = {}

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            return entry.value

    def set(self, key, value, ttl_seconds):
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl_seconds)

    def delete(self, key):
        with self._lock:
            self._entries.pop(key, None)

    def clear(self):
        with self._lock:
            self._entries.clear()


class InvoiceListCache:
    def __init__(self, backend=None, ttl_seconds=DEFAULT_TTL_SECONDS):
        self.backend = backend if backend is not None else MemoryCacheBackend()
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key(owner_id):
        return f"invoices:{owner_id}"

    def get(self, owner_id):
        """The cached list, or None when nothing usable is cached."""
        try:
            raw = self.backend.get(self.key(owner_id))
            return json.loads(raw) if raw is not None else None
        except Exception:
            logger.warning("cache_get_failed", extra={"owner_id": owner_id}, exc_info=True)
            return None

    def set(self, owner_id, invoices):
        try:
            self.backend.set(self.key(owner_id), json.dumps(invoices), self.ttl_seconds)
        except Exception:
            logger.warning("cache_set_failed", extra={"owner_id": owner_id}, exc_info=True)

    def invalidate(self, owner_id):
        try:
            self.backend.delete(self.key(owner_id))
        except Exception:
            logger.warning("cache_invalidate_failed", extra={"owner_id": owner_id}, exc_info=True)
