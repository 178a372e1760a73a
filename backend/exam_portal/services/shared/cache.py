"""
In-memory TTL cache owned by the service container
"""
import time
from typing import Any, Callable, Dict, Optional, Tuple


class InMemoryCache:
    """
    Key/value store whose entries expire after a per-entry TTL.

    Instances are created by the service container and injected where needed;
    there is no module-level cache.
    """

    def __init__(self, default_ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._store: Dict[str, Tuple[Any, float]] = {}

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._store[key] = (value, self._clock() + ttl)

    def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._store[key]
            return None
        return value

    def clear(self) -> None:
        self._store.clear()
