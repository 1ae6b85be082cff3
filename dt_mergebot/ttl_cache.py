"""Small in-process cache with per-entry lifetimes."""

from __future__ import annotations

import math
import time
from typing import Any, Callable, Dict, Tuple


class TTLCache:
    """Key/value store whose entries expire ``timeout`` seconds after being produced.

    A timeout of ``math.inf`` keeps an entry for the life of the process.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._store: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str, timeout: float, produce: Callable[[], Any]) -> Any:
        """Return the cached value for key, calling ``produce`` when missing or expired."""
        entry = self._store.get(key)
        if entry is not None and entry[0] > self._clock():
            return entry[1]
        value = produce()
        self._store[key] = (self._clock() + timeout, value)
        return value

    def clear(self) -> None:
        self._store.clear()


FOREVER = math.inf
