from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Any, Dict

from ...risk import compute_risk_score, open_directives
from ...storage import Storage, make_model_key, normalize_tail
from ..deps import get_storage

router = APIRouter(prefix="/aircraft")


def _require_aircraft(storage: Storage, tail: str) -> Dict[str, Any]:
    aircraft = storage.get_aircraft(tail)
    if not aircraft:
        raise HTTPException(status_code=404, detail="Aircraft not found")
    return aircraft


@router.get("/{tail}/summary")
async def aircraft_summary(tail: str, storage: Storage = Depends(get_storage)) -> Dict[str, Any]:
    """Registration summary with accident/AD/owner counts and the risk score."""
    tail = normalize_tail(tail)
    aircraft = _require_aircraft(storage, tail)
    accidents = storage.get_accidents(tail)
    owners = storage.get_owners(tail)
    open_ads = open_directives(storage.get_directives(make_model_key(aircraft["make"], aircraft["model"])))

    summary = {
        "tail": tail,
        "regStatus": "Valid",
        "airworthiness": "Standard",
        "adOpenCount": len(open_ads),
        "ntsbAccidents": len(accidents),
        "owners": len(owners),
        "riskScore": compute_risk_score(aircraft["year"], accidents, open_ads),
        "aircraft": {
            "tail": aircraft["tail"],
            "make": aircraft["make"],
            "model": aircraft["model"],
            "year": aircraft["year"],
            "engine": aircraft["engine"],
            "seats": aircraft["seats"],
            "serial": aircraft["serial"],
        },
    }
    return {"tail": tail, "summary": summary}


@router.get("/{tail}/history")
async def aircraft_history(tail: str, storage: Storage = Depends(get_storage)) -> Dict[str, Any]:
    tail = normalize_tail(tail)
    aircraft = _require_aircraft(storage, tail)
    history = {
        "owners": storage.get_owners(tail),
        "accidents": storage.get_accidents(tail),
        "adDirectives": storage.get_directives(make_model_key(aircraft["make"], aircraft["model"])),
    }
    return {"tail": tail, "history": history}


@router.get("/{tail}/live")
async def aircraft_live(tail: str, storage: Storage = Depends(get_storage)) -> Dict[str, Any]:
    tail = normalize_tail(tail)
    position = storage.latest_position(tail)
    if not position:
        raise HTTPException(status_code=404, detail="Live data not found")
    position.pop("aircraft", None)
    position.pop("tail", None)
    return {"tail": tail, "live": position}


@router.get("/{tail}/track")
async def aircraft_track(
    tail: str,
    hours: int = Query(24, ge=1, le=24 * 30, description="How far back to return positions"),
    storage: Storage = Depends(get_storage),
) -> Dict[str, Any]:
    tail = normalize_tail(tail)
    track = storage.track(tail, hours=hours)
    return {"tail": tail, "track": track, "count": len(track), "timeRange": f"{hours} hours"}
