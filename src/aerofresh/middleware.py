"""Request middleware: per-client rate limiting and GET response caching.

``APIMiddleware`` owns a ``FixedWindowRateLimiter`` and a ``ResponseCache``
and wraps any ``async (request) -> response`` handler. It is built explicitly
by the application factory and attached through ``RateLimitCacheMiddleware``
so tests can drive isolated instances with their own clock.
"""
import logging
import time
from collections import Counter, deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .cache import ResponseCache, _now_ms
from .config import CacheConfig, RateLimitConfig
from .metrics import MetricsTracker
from .rate_limit import FixedWindowRateLimiter, RateLimitResult, get_client_id

logger = logging.getLogger("aerofresh.middleware")

CallNext = Callable[[Request], Awaitable[Response]]

RESPONSE_TIME_SAMPLES = 1000
MAX_ENDPOINT_LABELS = 200
OTHER_ENDPOINTS = "(other)"


def endpoint_label(request: Request) -> str:
    """Matched route template (``/api/v1/aircraft/{tail}/summary``), else the raw path."""
    route = request.scope.get("route")
    return getattr(route, "path_format", None) or getattr(route, "path", None) or request.url.path


def _forbids_caching(response: Response) -> bool:
    cache_control = (response.headers.get("cache-control") or "").lower()
    return "no-cache" in cache_control or "no-store" in cache_control


async def _read_body(response: Response) -> bytes:
    body = getattr(response, "body", None)
    if body is not None:
        return body
    # Responses from BaseHTTPMiddleware.call_next are streamed
    chunks: List[bytes] = []
    async for chunk in response.body_iterator:
        if isinstance(chunk, str):
            chunk = chunk.encode(getattr(response, "charset", "utf-8"))
        chunks.append(chunk)
    return b"".join(chunks)


class APIMiddleware:
    """Rate limiter plus response cache in front of a request handler."""

    def __init__(
        self,
        rate_limit_config: Optional[RateLimitConfig] = None,
        cache_config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = _now_ms,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
        cache: Optional[ResponseCache] = None,
    ):
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter(rate_limit_config, clock=clock)
        self.cache = cache or ResponseCache(cache_config, clock=clock)

        self._total_requests = 0
        self._blocked_requests = 0
        self._response_times: Deque[float] = deque(maxlen=RESPONSE_TIME_SAMPLES)
        self._endpoints: Counter = Counter()

    async def handle(self, request: Request, call_next: CallNext, use_cache: bool = True) -> Response:
        """Apply the client quota, serve cached GETs, otherwise delegate.

        With ``use_cache`` false the request is still counted against the
        quota but never reads or fills the cache.
        """
        use_cache = use_cache and self.cache.enabled
        self._total_requests += 1
        client_id = get_client_id(request)

        decision = self.rate_limiter.hit(client_id)
        if not decision.allowed:
            self._blocked_requests += 1
            logger.info("Rate limit exceeded for %s (retry in %ss)", client_id, decision.retry_after)
            return self._rejection(decision)

        start = time.perf_counter()
        cache_key = self.cache.make_key(request.method, request.url.path, request.url.query)
        if use_cache:
            entry = self.cache.get(cache_key)
            if entry is not None:
                self.cache.record_hit()
                response = Response(
                    content=entry.body,
                    status_code=entry.status_code,
                    media_type=entry.media_type or "application/json",
                )
                response.headers["X-Cache"] = "HIT"
                response.headers["X-Cache-TTL"] = str(self.cache.ttl_ms)
                self._record_response_time(start)
                self._count_endpoint(entry.route or request.url.path)
                return self._with_quota_headers(response, decision)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.warning("Handler failed for %s %s: %s", request.method, request.url.path, type(exc).__name__)
            raise
        finally:
            self._record_response_time(start)
            # routing has filled in scope["route"] by now
            self._count_endpoint(endpoint_label(request))

        if use_cache and self._is_cacheable(request, response):
            body = await _read_body(response)
            self.cache.set(
                cache_key, body, response.headers.get("content-type"), response.status_code,
                route=endpoint_label(request),
            )
            self.cache.record_miss()
            rebuilt = Response(
                content=body,
                status_code=response.status_code,
                background=getattr(response, "background", None),
            )
            # raw_headers keeps repeated headers such as Set-Cookie
            rebuilt.raw_headers = [
                (name, value) for name, value in response.raw_headers if name.lower() != b"content-length"
            ] + [(b"content-length", str(len(body)).encode("latin-1"))]
            response = rebuilt
            response.headers["X-Cache"] = "MISS"
            response.headers["X-Cache-TTL"] = str(self.cache.ttl_ms)

        return self._with_quota_headers(response, decision)

    @staticmethod
    def _is_cacheable(request: Request, response: Response) -> bool:
        if request.method != "GET":
            return False
        if not 200 <= response.status_code < 300:
            return False
        return not _forbids_caching(response)

    def _rejection(self, decision: RateLimitResult) -> Response:
        return JSONResponse(
            {"error": "Rate limit exceeded", "retryAfter": decision.retry_after},
            status_code=429,
            headers={
                "Retry-After": str(decision.retry_after),
                "X-RateLimit-Limit": str(decision.limit),
                "X-RateLimit-Remaining": str(decision.remaining),
                "X-RateLimit-Reset": str(decision.reset_seconds),
            },
        )

    @staticmethod
    def _with_quota_headers(response: Response, decision: RateLimitResult) -> Response:
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response

    def _record_response_time(self, start: float) -> None:
        self._response_times.append((time.perf_counter() - start) * 1000.0)

    def _count_endpoint(self, label: str) -> None:
        if label not in self._endpoints and len(self._endpoints) >= MAX_ENDPOINT_LABELS:
            label = OTHER_ENDPOINTS
        self._endpoints[label] += 1

    # statistics

    @property
    def total_requests(self) -> int:
        return self._total_requests

    @property
    def blocked_requests(self) -> int:
        return self._blocked_requests

    @property
    def average_response_time(self) -> float:
        """Mean handler latency in milliseconds over the recent samples."""
        if not self._response_times:
            return 0.0
        return sum(self._response_times) / len(self._response_times)

    def top_endpoints(self, n: int = 5) -> List[Dict[str, object]]:
        return [{"endpoint": path, "requests": count} for path, count in self._endpoints.most_common(n)]

    def stats(self) -> dict:
        return {
            "total_requests": self._total_requests,
            "blocked_requests": self._blocked_requests,
            "average_response_time_ms": round(self.average_response_time, 2),
            "cache_hit_rate": self.cache.hit_rate,
            "active_clients": len(self.rate_limiter),
            "top_endpoints": self.top_endpoints(),
        }

    def cache_stats(self) -> dict:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    def clear_rate_limits(self) -> None:
        self.rate_limiter.clear()
        self._total_requests = 0
        self._blocked_requests = 0
        self._endpoints.clear()


class RateLimitCacheMiddleware(BaseHTTPMiddleware):
    """Starlette adapter that routes every request through an ``APIMiddleware``.

    ``cache_filter`` decides per request whether the cache may be used; the
    app passes its API-key check so unauthenticated callers never receive a
    response cached for someone else.
    """

    def __init__(self, app, core: APIMiddleware, cache_filter: Optional[Callable[[Request], bool]] = None):
        super().__init__(app)
        self.core = core
        self.cache_filter = cache_filter

    async def dispatch(self, request: Request, call_next):
        use_cache = self.cache_filter(request) if self.cache_filter else True
        return await self.core.handle(request, call_next, use_cache=use_cache)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Track requests and handler errors for the metrics endpoint."""

    def __init__(self, app, tracker: MetricsTracker):
        super().__init__(app)
        self.tracker = tracker

    async def dispatch(self, request: Request, call_next):
        client_id = get_client_id(request)
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            endpoint = endpoint_label(request)
            self.tracker.record_error(endpoint, type(e).__name__)
            self.tracker.record_response(endpoint, client_id, 500, (time.perf_counter() - start) * 1000.0)
            raise
        endpoint = endpoint_label(request)
        self.tracker.record_response(endpoint, client_id, response.status_code, (time.perf_counter() - start) * 1000.0)
        if response.status_code >= 500:
            self.tracker.record_error(endpoint, f"HTTP {response.status_code}")
        return response


__all__ = ["APIMiddleware", "MetricsMiddleware", "RateLimitCacheMiddleware", "endpoint_label"]
