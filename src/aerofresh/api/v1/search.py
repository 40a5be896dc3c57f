from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Any, Dict, Optional

from ...risk import compute_risk_score, open_directives
from ...storage import Storage, make_model_key
from ..deps import get_storage

router = APIRouter(prefix="/search")


@router.get("")
async def search_aircraft(
    q: str = Query("", description="Free text matched against tail, make and model"),
    make: str = Query(""),
    model: str = Query(""),
    year: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    storage: Storage = Depends(get_storage),
) -> Dict[str, Any]:
    """Search the registry; each result carries its risk score."""
    if not (q or make or model or year is not None):
        raise HTTPException(status_code=400, detail="Search query required")

    aircraft = storage.search_aircraft(q=q or None, make=make or None, model=model or None, year=year, limit=limit)

    # Directive lists are shared by every aircraft of the same make/model
    directives_by_key: Dict[str, list] = {}
    results = []
    for ac in aircraft:
        key = make_model_key(ac["make"], ac["model"])
        if key not in directives_by_key:
            directives_by_key[key] = open_directives(storage.get_directives(key))
        results.append({
            "tail": ac["tail"],
            "make": ac["make"],
            "model": ac["model"],
            "year": ac["year"],
            "engine": ac["engine"],
            "seats": ac["seats"],
            "riskScore": compute_risk_score(ac["year"], storage.get_accidents(ac["tail"]), directives_by_key[key]),
        })
    return {"results": results, "total": len(results)}
