"""
Short-lived response cache with a periodic sweep.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from loguru import logger

from meshprobe.core.errors import CacheSweepError

DEFAULT_TTL = 30.0
DEFAULT_SWEEP_INTERVAL = 10.0

_MISS = object()


@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.stored_at >= self.ttl


class ResponseCache:
    """
    Map request fingerprints to responses for a limited time.

    The cache is best-effort: a miss only costs one extra request.
    """

    MISS = _MISS

    def __init__(self, clock: Callable[[], float] = time.monotonic, default_ttl: float = DEFAULT_TTL):
        self.clock = clock
        self.default_ttl = default_ttl
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str, default: Any = _MISS) -> Any:
        """Return the cached value, or ``default`` on a miss."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expired(self.clock()):
                return default
            return entry.value

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(
                value=value,
                stored_at=self.clock(),
                ttl=self.default_ttl if ttl is None else ttl,
            )

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """Drop expired entries. Returns the number of evicted entries."""
        with self._lock:
            now = self.clock()
            expired = [k for k, e in self._entries.items() if e.expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Cache sweep evicted {len(expired)} entr{'y' if len(expired) == 1 else 'ies'}")
        return len(expired)

    def start_sweeper(self, interval: float = DEFAULT_SWEEP_INTERVAL) -> None:
        """Start sweeping in a daemon thread every ``interval`` seconds."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            args=(interval,),
            name="meshprobe-cache-sweep",
            daemon=True,
        )
        self._sweeper.start()

    def stop(self) -> None:
        """Stop the sweeper thread."""
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1.0)
            self._sweeper = None

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.sweep()
            except Exception as e:
                error = CacheSweepError(f"cache sweep failed: {e}")
                logger.warning(str(error))
