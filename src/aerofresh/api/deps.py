"""Shared FastAPI dependencies for the API routers."""
from fastapi import HTTPException, Request

from ..rate_limit import presented_api_key
from ..storage import Storage


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def api_key_accepted(request: Request) -> bool:
    """True when auth is off (no keys configured) or the caller's key is configured."""
    keys = getattr(request.app.state, "api_keys", None)
    if not keys:
        return True
    return presented_api_key(request) in keys


def require_api_key(request: Request) -> None:
    """Reject the request with 401 unless it carries a configured API key."""
    if not api_key_accepted(request):
        raise HTTPException(status_code=401, detail="Unauthorized")
