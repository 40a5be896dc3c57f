"""Aircraft risk scoring.

The score is a bounded 0-100 indicator built from the aircraft's age, its
accident history and the airworthiness directives open against its
make/model. It is derived on every request and never stored.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

BASE_SCORE = 25
ACCIDENT_WEIGHT = 15
FATAL_ACCIDENT_WEIGHT = 25
DIRECTIVE_WEIGHT = 5
MIN_SCORE = 0
MAX_SCORE = 100

# (minimum age exclusive, points); first match wins
AGE_BANDS = ((30, 20), (20, 10), (10, 5))


def _age_points(year: Optional[int], current_year: int) -> int:
    if year is None:
        return 0
    age = current_year - int(year)
    for threshold, points in AGE_BANDS:
        if age > threshold:
            return points
    return 0


def _is_fatal(accident: Dict[str, Any]) -> bool:
    return (accident.get("fatalities") or 0) > 0


def open_directives(directives: Optional[Iterable[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Return only the directives whose status is ``OPEN``."""
    return [d for d in (directives or []) if str(d.get("status") or "").upper() == "OPEN"]


def compute_risk_score(
    year: Optional[int],
    accidents: Optional[Iterable[Dict[str, Any]]] = None,
    directives: Optional[Iterable[Dict[str, Any]]] = None,
    current_year: Optional[int] = None,
) -> int:
    """Score an aircraft from its manufacture year, accidents and directives.

    Args:
        year: Manufacture year, or None when unknown (age is then ignored).
        accidents: Accident records; ``fatalities`` may be missing or None.
        directives: Directive records to count. Callers pass the open ADs
            for the aircraft's make/model; every supplied entry counts.
        current_year: Year to compute age against (defaults to the current
            UTC year).

    Returns:
        Integer score clamped to [0, 100].
    """
    if current_year is None:
        current_year = datetime.now(timezone.utc).year
    accidents = list(accidents or [])
    directives = list(directives or [])

    score = BASE_SCORE
    score += _age_points(year, current_year)
    score += ACCIDENT_WEIGHT * len(accidents)
    score += FATAL_ACCIDENT_WEIGHT * sum(1 for a in accidents if _is_fatal(a))
    score += DIRECTIVE_WEIGHT * len(directives)
    return max(MIN_SCORE, min(MAX_SCORE, score))


__all__ = ["compute_risk_score", "open_directives"]
