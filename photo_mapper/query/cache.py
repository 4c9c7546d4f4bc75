"""
Short-lived response cache in front of the query engine.
"""
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from .. import config

class ResponseCache:
    """
    Key -> JSON blob cache with per-entry TTL.

    Entries are opaque; there is no partial invalidation. An entry leaves the
    cache by expiring (checked lazily on read) or by flush().
    """
    def __init__(self,
                 max_entry_bytes: int = config.CACHE_MAX_ENTRY_BYTES,
                 clock: Callable[[], float] = time.monotonic):
        self.max_entry_bytes = max_entry_bytes
        self.clock = clock
        self._entries: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()

    def get_or_compute(self, key: str, ttl_seconds: float, compute: Callable[[], Any]) -> Tuple[Any, bool]:
        """
        Returns (value, cached). compute() runs outside the lock and must
        return something JSON-serializable.
        """
        blob = self._get(key)
        if blob is not None:
            logging.debug(f"Cache hit: {key}")
            return json.loads(blob), True

        value = compute()
        blob = json.dumps(value)
        if len(blob.encode("utf-8")) > self.max_entry_bytes:
            logging.debug(f"Not caching {key}: {len(blob)} bytes exceeds {self.max_entry_bytes}")
        else:
            with self._lock:
                self._entries[key] = (self.clock() + ttl_seconds, blob)
        return value, False

    def _get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, blob = entry
            if self.clock() >= expires_at:
                del self._entries[key]
                return None
            return blob

    def flush(self) -> int:
        """Drops every entry. Returns how many were dropped."""
        with self._lock:
            n = len(self._entries)
            self._entries.clear()
        logging.info(f"Response cache flushed ({n} entries).")
        return n

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
