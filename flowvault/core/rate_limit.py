import threading
import time
from collections import deque
from typing import Callable, Deque, Dict

from fastapi import Request
from slowapi import Limiter

from flowvault.config import settings

UNKNOWN_CLIENT = "unknown"


def client_identity(request: Request) -> str:
    """Best available client address; spoofable behind untrusted proxies."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT


class SlidingWindowLimiter:
    """Per-identity sliding window admission control.

    Rejected attempts are not recorded, so a client that keeps hammering is
    admitted again as soon as its oldest admitted request leaves the window.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sweep_every: int = 256,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._sweep_every = max(1, sweep_every)
        self._calls = 0

    def admit(self, identity: str) -> bool:
        now = self._clock()
        cutoff = now - self.window_seconds
        with self._lock:
            self._calls += 1
            if self._calls % self._sweep_every == 0:
                self._sweep(cutoff)
            window = self._windows.setdefault(identity, deque())
            while window and window[0] <= cutoff:
                window.popleft()
            if len(window) >= self.max_requests:
                return False
            window.append(now)
            return True

    def _sweep(self, cutoff: float) -> None:
        # Caller holds the lock. A window whose newest entry is stale would prune to empty.
        stale = [key for key, window in self._windows.items() if not window or window[-1] <= cutoff]
        for key in stale:
            del self._windows[key]

    def tracked(self) -> int:
        with self._lock:
            return len(self._windows)

    def pending(self, identity: str) -> int:
        with self._lock:
            return len(self._windows.get(identity, ()))

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


def build_admission_limiter() -> SlidingWindowLimiter:
    return SlidingWindowLimiter(
        max_requests=settings.RATE_LIMIT_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW,
    )


# App-wide slowapi limiter for the administrative endpoints.
limiter = Limiter(key_func=client_identity)
