import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError

from . import __version__
from . import config as config_mod
from .api import router as api_router
from .api.deps import api_key_accepted, require_api_key
from .metrics import MetricsTracker
from .middleware import APIMiddleware, MetricsMiddleware, RateLimitCacheMiddleware
from .rate_limit import limiter
from .storage import Storage

# module logger
logger = logging.getLogger("aerofresh")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
NO_CACHE = {"Cache-Control": "no-cache, no-store, must-revalidate"}


ops_router = APIRouter(prefix="/api")


@ops_router.get("/health")
async def health(request: Request) -> JSONResponse:
    """Database connectivity and row counts; served without authentication."""
    storage: Storage = request.app.state.storage
    try:
        storage.ping()
        stats = storage.counts()
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", e)
        return JSONResponse(
            {
                "ok": False,
                "ts": int(datetime.now(timezone.utc).timestamp() * 1000),
                "message": "Database connection failed",
                "error": str(e),
                "version": __version__,
                "database": "disconnected",
            },
            status_code=500,
            headers=NO_CACHE,
        )
    return JSONResponse(
        {
            "ok": True,
            "ts": int(datetime.now(timezone.utc).timestamp() * 1000),
            "message": "AeroFresh API is running",
            "version": __version__,
            "database": "connected",
            "stats": stats,
        },
        headers=NO_CACHE,
    )


@ops_router.get("/metrics", dependencies=[Depends(require_api_key)])
@limiter.limit("12/minute")
async def metrics(request: Request) -> JSONResponse:
    """Process metrics plus rate-limit and cache statistics.

    Useful for monitoring load and for checking whether the cache is paying off.
    """
    core: APIMiddleware = request.app.state.api_middleware
    summary: Dict[str, Any] = request.app.state.metrics.summary()
    summary["rate_limit"] = core.stats()
    summary["cache"] = core.cache_stats()
    return JSONResponse(summary, headers=NO_CACHE)


@ops_router.post("/admin/cache/clear", dependencies=[Depends(require_api_key)])
@limiter.limit("6/minute")
async def clear_cache(request: Request) -> Dict[str, Any]:
    request.app.state.api_middleware.clear_cache()
    logger.info("Response cache cleared")
    return {"cleared": "cache"}


@ops_router.post("/admin/rate-limits/clear", dependencies=[Depends(require_api_key)])
@limiter.limit("6/minute")
async def clear_rate_limits(request: Request) -> Dict[str, Any]:
    request.app.state.api_middleware.clear_rate_limits()
    logger.info("Rate limit windows cleared")
    return {"cleared": "rate-limits"}


def create_app(
    cfg: Optional[Dict[str, Any]] = None,
    storage: Optional[Storage] = None,
    api_middleware: Optional[APIMiddleware] = None,
) -> FastAPI:
    """Build the API application.

    Args:
        cfg: Parsed config mapping; defaults to the file named by AEROFRESH_CONFIG.
        storage: Data access object; defaults to one built from ``database_url``.
        api_middleware: Rate limiter/cache instance; defaults to one built from
            the ``rate_limit`` and ``cache`` config sections.
    """
    if cfg is None:
        cfg = config_mod.CFG
    if storage is None:
        storage = Storage(config_mod.database_url(cfg))
    if api_middleware is None:
        api_middleware = APIMiddleware(config_mod.rate_limit_config(cfg), config_mod.cache_config(cfg))
    log_level = str(cfg.get("log_level", "INFO")).upper()

    app = FastAPI(title="AeroFresh API", version=__version__)
    app.state.storage = storage
    app.state.api_middleware = api_middleware
    app.state.metrics = MetricsTracker()
    app.state.api_keys = set(config_mod.api_keys(cfg))
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Last added runs first: CORS -> metrics -> rate limit/cache -> routes
    app.add_middleware(RateLimitCacheMiddleware, core=api_middleware, cache_filter=api_key_accepted)
    app.add_middleware(MetricsMiddleware, tracker=app.state.metrics)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config_mod.cors_origins(cfg),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "x-api-key"],
        max_age=86400,
    )

    @app.on_event("startup")
    async def startup() -> None:
        logging.basicConfig(level=log_level, format=LOG_FORMAT)
        logger.info(
            "AeroFresh API starting: quota %d/%dms, cache %s (ttl %dms, max %d), auth %s",
            api_middleware.rate_limiter.limit,
            api_middleware.rate_limiter.window_ms,
            "on" if api_middleware.cache.enabled else "off",
            api_middleware.cache.ttl_ms,
            api_middleware.cache.max_size,
            "on" if app.state.api_keys else "off",
        )

    @app.on_event("shutdown")
    async def shutdown() -> None:
        storage.close()

    app.include_router(ops_router)
    # Mount API package (routes under /api/v1/...)
    app.include_router(api_router)
    return app


__all__ = ["create_app"]
