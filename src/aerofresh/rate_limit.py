"""Rate limiting utilities for API endpoints.

Two layers live here:

- ``FixedWindowRateLimiter``: the per-client quota enforced by the request
  middleware on every call (see ``middleware.APIMiddleware``).
- ``limiter``: a slowapi ``Limiter`` for tighter per-route limits on the
  operational endpoints (metrics, admin).

Both identify a client the same way, via ``get_client_id``.
"""
import math
import os
import sys
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import Request
from slowapi import Limiter

from .config import RateLimitConfig


def _now_ms() -> float:
    return time.time() * 1000.0


def _first_hop(value: Optional[str]) -> str:
    if not value:
        return ""
    return value.split(",")[0].strip()


def presented_api_key(request: Request) -> str:
    """API key from ``x-api-key`` or an ``Authorization: Bearer`` header, or ""."""
    key = request.headers.get("x-api-key")
    if key:
        return key
    auth = request.headers.get("authorization", "")
    if auth.startswith("Bearer "):
        return auth[len("Bearer "):].strip()
    return ""


def get_client_id(request: Request) -> str:
    """Return ``api:<key>`` when the caller presents an API key, else ``ip:<addr>``."""
    api_key = presented_api_key(request)
    if api_key:
        return f"api:{api_key}"

    client_ip = (
        _first_hop(request.headers.get("cf-connecting-ip"))
        or _first_hop(request.headers.get("X-Forwarded-For"))
        or _first_hop(request.headers.get("X-Real-IP"))
    )
    if not client_ip and request.client:
        client_ip = request.client.host
    return f"ip:{client_ip or 'unknown'}"


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float  # epoch milliseconds


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch milliseconds
    retry_after: int  # seconds, only meaningful when rejected

    @property
    def reset_seconds(self) -> int:
        return int(math.ceil(self.reset_at / 1000.0))


class FixedWindowRateLimiter:
    """Fixed-window request counter keyed by client id.

    Entries are created lazily on a client's first request in a window and
    replaced once the window has passed. Stale entries are dropped on every
    ``hit`` so memory stays bounded by the number of recently active clients.
    State is process-local; a shared store would have to implement the same
    ``hit``/``remaining``/``reset_time``/``clear`` surface.
    """

    def __init__(self, config: Optional[RateLimitConfig] = None, clock: Callable[[], float] = _now_ms):
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self.config.requests_per_minute

    @property
    def window_ms(self) -> int:
        return self.config.window_ms

    def __len__(self) -> int:
        return len(self._entries)

    def hit(self, client_id: str) -> RateLimitResult:
        """Count one request for ``client_id`` and report whether it may proceed."""
        with self._lock:
            now = self._clock()
            self._cleanup(now - self.window_ms)

            entry = self._entries.get(client_id)
            if entry is None or entry.reset_at <= now:
                entry = RateLimitEntry(count=0, reset_at=now + self.window_ms)
                self._entries[client_id] = entry

            if entry.count >= self.limit:
                return RateLimitResult(
                    allowed=False,
                    limit=self.limit,
                    remaining=0,
                    reset_at=entry.reset_at,
                    retry_after=self._retry_after(entry, now),
                )

            entry.count += 1
            return RateLimitResult(
                allowed=True,
                limit=self.limit,
                remaining=max(0, self.limit - entry.count),
                reset_at=entry.reset_at,
                retry_after=0,
            )

    def remaining(self, client_id: str) -> int:
        entry = self._entries.get(client_id)
        if entry is None:
            return self.limit
        return max(0, self.limit - entry.count)

    def reset_time(self, client_id: str) -> int:
        """Epoch seconds at which the client's current window ends."""
        entry = self._entries.get(client_id)
        reset_at = entry.reset_at if entry else self._clock() + self.window_ms
        return int(math.ceil(reset_at / 1000.0))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _retry_after(self, entry: RateLimitEntry, now: float) -> int:
        seconds = int(math.ceil((entry.reset_at - now) / 1000.0))
        return max(1, seconds)

    def _cleanup(self, window_start: float) -> None:
        expired = [cid for cid, e in self._entries.items() if e.reset_at <= window_start]
        for cid in expired:
            del self._entries[cid]


def _testing() -> bool:
    return bool(
        os.environ.get("PYTEST_CURRENT_TEST")
        or os.environ.get("AEROFRESH_TESTING") == "1"
        or "pytest" in sys.modules
    )


# Per-route limits for operational endpoints; the global quota is enforced by the middleware
limiter = Limiter(key_func=get_client_id)

# Disable limiter during tests so endpoints can be hammered by TestClient
if _testing():
    limiter.enabled = False


__all__ = [
    "FixedWindowRateLimiter",
    "RateLimitEntry",
    "RateLimitResult",
    "get_client_id",
    "presented_api_key",
    "limiter",
]
