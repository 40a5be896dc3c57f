from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Query
from typing import Any, Dict

from ...storage import Storage
from ..deps import get_storage

router = APIRouter(prefix="/tracking")


@router.get("/live")
async def live_positions(
    limit: int = Query(100, ge=1, le=1000),
    minutes: int = Query(30, ge=1, le=24 * 60),
    storage: Storage = Depends(get_storage),
) -> Dict[str, Any]:
    """Most recent position reports across all aircraft."""
    positions = storage.recent_positions(minutes=minutes, limit=limit)
    return {
        "positions": positions,
        "count": len(positions),
        "timeRange": f"{minutes} minutes",
        "lastUpdate": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/region")
async def region_positions(
    latMin: float = Query(-90.0, ge=-90, le=90),
    latMax: float = Query(90.0, ge=-90, le=90),
    lonMin: float = Query(-180.0, ge=-180, le=180),
    lonMax: float = Query(180.0, ge=-180, le=180),
    limit: int = Query(100, ge=1, le=1000),
    storage: Storage = Depends(get_storage),
) -> Dict[str, Any]:
    """Positions from the last 30 minutes inside a lat/lon bounding box."""
    positions = storage.positions_in_region(latMin, latMax, lonMin, lonMax, minutes=30, limit=limit)
    return {
        "positions": positions,
        "count": len(positions),
        "bounds": {"latMin": latMin, "latMax": latMax, "lonMin": lonMin, "lonMax": lonMax},
        "lastUpdate": datetime.now(timezone.utc).isoformat(),
    }
