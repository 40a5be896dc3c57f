from fastapi import APIRouter, Depends

from ..deps import require_api_key
from . import aircraft, search, tracking

router = APIRouter(prefix="/v1", dependencies=[Depends(require_api_key)])
router.include_router(aircraft.router)
router.include_router(search.router)
router.include_router(tracking.router)

__all__ = ["router"]
