"""
Time-bounded result cache.

The cache is an ordinary object owned by its caller: there is no
module-level instance.  Time comes from an injected ``clock`` (seconds as
a float, ``time.monotonic`` by default) so tests can advance it by hand.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

from transaction_analyzer.exceptions import PreconditionViolation
from transaction_analyzer.logging_setup import get_logger

logger = get_logger("cache")

V = TypeVar("V")

Clock = Callable[[], float]


class TTLCache(Generic[V]):
    """Key → value cache whose entries expire ``ttl_seconds`` after storage.

    Parameters
    ----------
    ttl_seconds:
        Lifetime of an entry.  An entry stored at ``t`` is served while
        ``clock() - t < ttl_seconds``.
    clock:
        Zero-argument callable returning the current time in seconds.
    """

    def __init__(self, ttl_seconds: float = 60.0, clock: Clock = time.monotonic) -> None:
        if ttl_seconds <= 0:
            raise PreconditionViolation(
                f"ttl_seconds must be positive, got {ttl_seconds!r}"
            )
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[V, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[V]:
        """Return the live value for *key*, or ``None``."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, stored_at = entry
            if self._clock() - stored_at >= self._ttl:
                del self._entries[key]
                logger.debug("Cache entry expired: %r", key)
                return None
            return value

    def set(self, key: Hashable, value: V) -> None:
        """Store *value* and drop every entry that has already expired."""
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            self._entries[key] = (value, now)

    def _purge_expired(self, now: float) -> None:
        # Caller holds the lock
        expired = [
            key for key, (_, stored_at) in self._entries.items()
            if now - stored_at >= self._ttl
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Purged %d expired cache entries", len(expired))

    def get_or_compute(self, key: Hashable, compute: Callable[[], V]) -> Tuple[V, bool]:
        """Return ``(value, cached)``.

        On a miss, ``compute()`` runs outside the lock and its result is
        stored unless it is ``None``.
        """
        value = self.get(key)
        if value is not None:
            return value, True

        value = compute()
        if value is not None:
            self.set(key, value)
        return value, False

    def invalidate(self, key: Hashable) -> bool:
        """Drop *key*; return whether it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        """Number of stored entries; expired ones linger until the next ``set``."""
        with self._lock:
            return len(self._entries)
