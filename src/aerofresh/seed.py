"""Load the sample fleet into the configured database.

Useful for development: ``python -m aerofresh.seed`` populates a fresh
SQLite file so every endpoint has something to return.
"""

import argparse
import logging
import time
from typing import Any, Dict, List, Optional

from . import config as config_mod
from .storage import Storage, make_model_key

logger = logging.getLogger("aerofresh.seed")

SAMPLE_AIRCRAFT: List[Dict[str, Any]] = [
    {"tail": "N737AB", "serial": "LN-12345", "make": "Boeing", "model": "737-800", "type_code": "B738", "year": 2018, "engine": "CFM56-7B26", "seats": 189},
    {"tail": "N320CD", "serial": "MSN-4567", "make": "Airbus", "model": "A320", "type_code": "A320", "year": 2019, "engine": "CFM56-5B4", "seats": 180},
    {"tail": "N172EF", "serial": "172-12345", "make": "Cessna", "model": "172", "type_code": "C172", "year": 1990, "engine": "Lycoming O-320-D2J", "seats": 4},
    {"tail": "N787GH", "serial": "LN-98765", "make": "Boeing", "model": "787-9", "type_code": "B789", "year": 2021, "engine": "GEnx-1B74", "seats": 290},
    {"tail": "N350IJ", "serial": "MSN-5432", "make": "Airbus", "model": "A350-900", "type_code": "A359", "year": 2020, "engine": "Trent XWB-84", "seats": 315},
]

SAMPLE_OWNERS: List[Dict[str, Any]] = [
    {"owner_id": "owner-1", "name": "Southwest Airlines", "type": "Airline", "state": "TX", "country": "USA"},
    {"owner_id": "owner-2", "name": "American Airlines", "type": "Airline", "state": "TX", "country": "USA"},
    {"owner_id": "owner-3", "name": "Flight Training Academy", "type": "Flight School", "state": "CA", "country": "USA"},
]

SAMPLE_OWNERSHIP = [
    ("N737AB", "owner-1", "2018-04-01", None),
    ("N320CD", "owner-2", "2019-06-15", None),
    ("N172EF", "owner-3", "2005-03-10", None),
]

SAMPLE_ACCIDENTS: List[Dict[str, Any]] = [
    {"tail": "N172EF", "date": "2015-08-22", "severity": "MINOR", "phase": "LANDING", "lat": 34.2, "lon": -118.5,
     "narrative": "Hard landing in gusty crosswind; nose gear damaged.", "injuries": 0, "fatalities": 0},
]

SAMPLE_DIRECTIVES: List[Dict[str, Any]] = [
    {"ref": "AD 2020-24-09", "make": "Cessna", "model": "172", "summary": "Inspection of fuel lines for corrosion",
     "effective_date": "2020-12-10", "status": "OPEN", "severity": "MEDIUM"},
    {"ref": "AD 2019-11-02", "make": "Boeing", "model": "737-800", "summary": "Inspection of slat track assemblies",
     "effective_date": "2019-06-01", "status": "CLOSED", "severity": "HIGH"},
]


def seed(storage: Storage, now: Optional[float] = None) -> Dict[str, int]:
    """Upsert the sample records; safe to run repeatedly."""
    if now is None:
        now = time.time()
    for record in SAMPLE_AIRCRAFT:
        storage.upsert_aircraft(record)
    for owner in SAMPLE_OWNERS:
        storage.upsert_owner(**owner)
    for tail, owner_id, start, end in SAMPLE_OWNERSHIP:
        storage.link_owner(tail, owner_id, start, end)
    # accidents have no natural key, so only insert them into an empty history
    for accident in SAMPLE_ACCIDENTS:
        if not storage.get_accidents(accident["tail"]):
            storage.add_accident(**accident)
    for ad in SAMPLE_DIRECTIVES:
        storage.upsert_directive(
            ad["ref"], make_model_key(ad["make"], ad["model"]), ad["summary"],
            ad["effective_date"], ad["status"], ad["severity"],
        )
    for i, record in enumerate(SAMPLE_AIRCRAFT):
        storage.upsert_live_position(
            record["tail"], round(now - 60 * i), 34.05 + 0.1 * i, -118.24 - 0.1 * i,
            alt=3000 + 1000 * i, speed=120 + 20 * i, heading=(45 * i) % 360, src="demo",
        )
    return storage.counts()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the AeroFresh database with sample aircraft")
    parser.add_argument("--database-url", help="SQLAlchemy URL (defaults to the configured database)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    url = args.database_url or config_mod.database_url(config_mod.CFG)
    storage = Storage(url)
    counts = seed(storage)
    logger.info("Seeded %s: %d aircraft, %d accidents, %d directives",
                url, counts["aircraft"], counts["accidents"], counts["adDirectives"])


if __name__ == "__main__":
    main()
