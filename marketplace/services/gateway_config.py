from __future__ import annotations

import threading
import time
from typing import Callable, Generic, Optional, Tuple, TypeVar

T = TypeVar("T")


class TtlCache(Generic[T]):
    """Single-value cache holding ``(value, fetched_at)``.

    ``clock`` returns seconds and is injectable so expiry can be tested
    without sleeping.
    """

    def __init__(self, loader: Callable[[], T], ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entry: Optional[Tuple[T, float]] = None
        self._lock = threading.Lock()

    @property
    def entry(self) -> Optional[Tuple[T, float]]:
        return self._entry

    def is_fresh(self) -> bool:
        if self._entry is None:
            return False
        return (self._clock() - self._entry[1]) < self.ttl_seconds

    def get_or_refresh(self) -> T:
        with self._lock:
            if not self.is_fresh():
                self._entry = (self._loader(), self._clock())
            return self._entry[0]

    def invalidate(self) -> None:
        with self._lock:
            self._entry = None
