"""Process-level request metrics for the ``/api/metrics`` endpoint.

Complements ``APIMiddleware.stats()``, which only sees traffic that reaches
the rate limiter: this tracker records the final status and latency of every
response, handler errors, which clients are active and host resource usage.
"""
import time
from collections import Counter, defaultdict, deque
from datetime import datetime, timezone
from typing import Deque, Dict, Iterable, NamedTuple, Optional

import psutil

SAMPLES_PER_ENDPOINT = 1000
ERRORS_PER_ENDPOINT = 100
MAX_ENDPOINTS = 200
OTHER_ENDPOINTS = "(other)"


class ResponseSample(NamedTuple):
    ts: float
    client_id: str
    status_code: int
    duration_ms: float


def _status_class(status_code: int) -> str:
    return f"{status_code // 100}xx"


def _since(samples: Iterable, cutoff: float) -> list:
    return [s for s in samples if s[0] > cutoff]


class MetricsTracker:
    """Rolling per-endpoint response and error samples.

    Args:
        active_window: Seconds since its last request for a client to count as active.
    """

    def __init__(self, active_window: int = 300, clock=time.time):
        self.active_window = active_window
        self._clock = clock
        self._responses: Dict[str, Deque[ResponseSample]] = defaultdict(lambda: deque(maxlen=SAMPLES_PER_ENDPOINT))
        self._errors: Dict[str, Deque[tuple]] = defaultdict(lambda: deque(maxlen=ERRORS_PER_ENDPOINT))
        self._last_seen: Dict[str, float] = {}
        self._start_time = clock()

    def _bucket(self, endpoint: str) -> str:
        if endpoint in self._responses or len(self._responses) < MAX_ENDPOINTS:
            return endpoint
        return OTHER_ENDPOINTS

    def record_response(self, endpoint: str, client_id: str, status_code: int, duration_ms: float) -> None:
        now = self._clock()
        endpoint = self._bucket(endpoint)
        self._responses[endpoint].append(ResponseSample(now, client_id, status_code, duration_ms))
        self._last_seen[client_id] = now

    def record_error(self, endpoint: str, error_type: str) -> None:
        if endpoint not in self._errors and len(self._errors) >= MAX_ENDPOINTS:
            endpoint = OTHER_ENDPOINTS
        self._errors[endpoint].append((self._clock(), error_type))

    def active_clients(self) -> Dict[str, int]:
        """Clients seen within the active window, split by how they identified."""
        cutoff = self._clock() - self.active_window
        self._last_seen = {c: ts for c, ts in self._last_seen.items() if ts > cutoff}
        api = sum(1 for c in self._last_seen if c.startswith("api:"))
        return {"total": len(self._last_seen), "api_key": api, "ip": len(self._last_seen) - api}

    def request_rate(self, endpoint: Optional[str] = None, window: int = 60) -> float:
        """Responses per second over the last ``window`` seconds."""
        if window <= 0:
            return 0.0
        cutoff = self._clock() - window
        groups = [self._responses.get(endpoint, ())] if endpoint else self._responses.values()
        return sum(len(_since(g, cutoff)) for g in groups) / window

    def error_rate(self, endpoint: Optional[str] = None, window: int = 60) -> float:
        """Handler exceptions and 5xx responses per second."""
        if window <= 0:
            return 0.0
        cutoff = self._clock() - window
        groups = [self._errors.get(endpoint, ())] if endpoint else self._errors.values()
        return sum(len(_since(g, cutoff)) for g in groups) / window

    def resource_usage(self) -> dict:
        try:
            memory = psutil.virtual_memory()
            rss = psutil.Process().memory_info().rss
            return {
                "cpu_percent": round(psutil.cpu_percent(interval=None), 1),
                "memory": {
                    "process_rss_mb": round(rss / 1024 / 1024, 1),
                    "available_mb": round(memory.available / 1024 / 1024, 1),
                    "percent": round(memory.percent, 1),
                },
            }
        except psutil.Error as e:
            return {"error": str(e)}

    def uptime(self) -> float:
        return self._clock() - self._start_time

    def endpoint_stats(self, window: int = 300) -> dict:
        """Per-path counts, status classes and mean latency over ``window`` seconds."""
        cutoff = self._clock() - window
        stats = {}
        for endpoint in list(self._responses):
            recent = _since(self._responses[endpoint], cutoff)
            if not recent:
                continue
            statuses = Counter(_status_class(s.status_code) for s in recent)
            stats[endpoint] = {
                "requests": len(recent),
                "status": dict(statuses),
                "rate_limited": sum(1 for s in recent if s.status_code == 429),
                "errors": len(_since(self._errors.get(endpoint, ()), cutoff)),
                "avg_ms": round(sum(s.duration_ms for s in recent) / len(recent), 2),
            }
        return stats

    def summary(self) -> dict:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime(), 1),
            "active_clients": self.active_clients(),
            "request_rate": {
                "1min": round(self.request_rate(window=60), 2),
                "5min": round(self.request_rate(window=300), 2),
            },
            "error_rate": {
                "1min": round(self.error_rate(window=60), 2),
                "5min": round(self.error_rate(window=300), 2),
            },
            "resources": self.resource_usage(),
            "endpoints": self.endpoint_stats(),
        }


__all__ = ["MetricsTracker", "ResponseSample"]
