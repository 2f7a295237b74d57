import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from config import get_settings


@dataclass
class Window:
    count: int
    reset_at: float


class RateLimitStore(Protocol):
    def get(self, key: str) -> Optional[Window]: ...

    def put(self, key: str, window: Window) -> None: ...

    def sweep(self, now: float) -> int: ...


class InMemoryRateLimitStore:
    def __init__(self) -> None:
        self._windows: dict[str, Window] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Window]:
        with self._lock:
            return self._windows.get(key)

    def put(self, key: str, window: Window) -> None:
        with self._lock:
            self._windows[key] = window

    def sweep(self, now: float) -> int:
        with self._lock:
            expired = [k for k, w in self._windows.items() if now > w.reset_at]
            for key in expired:
                del self._windows[key]
            return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


class RateLimiter:
    """Fixed-window request counter per user."""

    def __init__(
        self,
        store: RateLimitStore,
        limit: int,
        window_secs: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("Rate limit must be at least 1")
        if window_secs <= 0:
            raise ValueError("Rate limit window must be positive")
        self.store = store
        self.limit = limit
        self.window_secs = window_secs
        self.clock = clock

    def check(self, user_id: int) -> bool:
        key = str(user_id)
        now = self.clock()
        window = self.store.get(key)
        if window is None or now > window.reset_at:
            self.store.put(key, Window(count=1, reset_at=now + self.window_secs))
            return True
        if window.count >= self.limit:
            return False
        window.count += 1
        self.store.put(key, window)
        return True

    def sweep(self) -> int:
        return self.store.sweep(self.clock())


def build_rate_limiter() -> RateLimiter:
    settings = get_settings()
    return RateLimiter(
        InMemoryRateLimitStore(),
        limit=settings.rate_limit_requests,
        window_secs=settings.rate_limit_window_secs,
    )
