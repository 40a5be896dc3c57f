"""Aircraft data access using SQLAlchemy Core.

Works against SQLite (development, tests) or PostgreSQL. Tail numbers are
stored upper-case; directive make/model keys are stored lower-case
``"<make>-<model>"`` so lookups are case-insensitive on both ends.
"""
import time
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import (
    Column,
    Date,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    and_,
    create_engine,
    func,
    insert,
    or_,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine

DateLike = Union[date, str, None]


def normalize_tail(tail: str) -> str:
    return (tail or "").strip().upper()


def make_model_key(make: Optional[str], model: Optional[str]) -> str:
    return f"{make or ''}-{model or ''}".lower()


def _as_date(value: DateLike) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


class Storage:
    """DB abstraction over the aircraft, owner, accident, directive and live tables."""

    def __init__(self, db_url: Optional[str] = None, db_path: Optional[str] = None) -> None:
        if db_url:
            url = db_url
        elif db_path:
            url = f"sqlite:///{db_path}"
        else:
            url = "sqlite:///aerofresh.db"
        connect_args = {}
        if url.startswith("sqlite:"):
            connect_args = {"check_same_thread": False}

        self.url = url
        self.engine: Engine = create_engine(url, future=True, connect_args=connect_args)
        self.metadata = MetaData()

        self.aircraft = Table(
            "aircraft",
            self.metadata,
            Column("tail", String(16), primary_key=True),
            Column("serial", String(64)),
            Column("make", String(64), index=True),
            Column("model", String(64), index=True),
            Column("type_code", String(8)),
            Column("year", Integer),
            Column("engine", String(64)),
            Column("seats", Integer),
        )

        self.owners = Table(
            "owners",
            self.metadata,
            Column("id", String(64), primary_key=True),
            Column("name", String(200), nullable=False),
            Column("type", String(32)),
            Column("state", String(32)),
            Column("country", String(64)),
        )

        self.aircraft_owners = Table(
            "aircraft_owners",
            self.metadata,
            Column("id", Integer, primary_key=True),
            Column("tail", String(16), ForeignKey("aircraft.tail"), index=True, nullable=False),
            Column("owner_id", String(64), ForeignKey("owners.id"), nullable=False),
            Column("start_date", Date),
            Column("end_date", Date),
            UniqueConstraint("tail", "owner_id", "start_date", name="uq_aircraft_owner_period"),
        )

        self.accidents = Table(
            "accidents",
            self.metadata,
            Column("id", Integer, primary_key=True),
            Column("tail", String(16), index=True, nullable=False),
            Column("date", Date),
            Column("severity", String(32)),
            Column("phase", String(64)),
            Column("lat", Float),
            Column("lon", Float),
            Column("narrative", Text),
            Column("injuries", Integer),
            Column("fatalities", Integer),
        )

        self.ad_directives = Table(
            "ad_directives",
            self.metadata,
            Column("id", Integer, primary_key=True),
            Column("ref", String(64), unique=True, nullable=False),
            Column("make_model_key", String(160), index=True, nullable=False),
            Column("summary", Text),
            Column("effective_date", Date),
            Column("status", String(16), default="OPEN"),
            Column("severity", String(16)),
        )

        # live_events: one row per (tail, ts) position report
        self.live_events = Table(
            "live_events",
            self.metadata,
            Column("id", Integer, primary_key=True),
            Column("tail", String(16), index=True, nullable=False),
            Column("ts", Float, index=True, nullable=False),
            Column("lat", Float),
            Column("lon", Float),
            Column("alt", Float),
            Column("speed", Float),
            Column("heading", Float),
            Column("src", String(32)),
            UniqueConstraint("tail", "ts", name="uq_live_tail_ts"),
        )

        self.metadata.create_all(self.engine)

    def _conn(self):
        return self.engine.connect()

    # health

    def ping(self) -> bool:
        with self._conn() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def counts(self) -> Dict[str, int]:
        with self._conn() as conn:
            return {
                "aircraft": conn.execute(select(func.count()).select_from(self.aircraft)).scalar_one(),
                "adDirectives": conn.execute(select(func.count()).select_from(self.ad_directives)).scalar_one(),
                "accidents": conn.execute(select(func.count()).select_from(self.accidents)).scalar_one(),
            }

    # aircraft

    def _aircraft_row(self, row) -> Dict[str, Any]:
        return {
            "tail": row.tail,
            "serial": row.serial,
            "make": row.make,
            "model": row.model,
            "typeCode": row.type_code,
            "year": row.year,
            "engine": row.engine,
            "seats": row.seats,
        }

    def get_aircraft(self, tail: str) -> Optional[Dict[str, Any]]:
        with self._conn() as conn:
            row = conn.execute(select(self.aircraft).where(self.aircraft.c.tail == normalize_tail(tail))).fetchone()
        return self._aircraft_row(row) if row else None

    def search_aircraft(
        self,
        q: Optional[str] = None,
        make: Optional[str] = None,
        model: Optional[str] = None,
        year: Optional[int] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Find aircraft by free text (tail/make/model) and/or exact filters."""
        t = self.aircraft
        conditions = []
        if q:
            pattern = f"%{q}%"
            conditions.append(or_(t.c.tail.ilike(pattern), t.c.make.ilike(pattern), t.c.model.ilike(pattern)))
        if make:
            conditions.append(t.c.make.ilike(f"%{make}%"))
        if model:
            conditions.append(t.c.model.ilike(f"%{model}%"))
        if year is not None:
            conditions.append(t.c.year == year)

        stmt = select(t).order_by(t.c.tail.asc()).limit(limit)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        with self._conn() as conn:
            rows = conn.execute(stmt).fetchall()
        return [self._aircraft_row(r) for r in rows]

    def upsert_aircraft(self, record: Dict[str, Any]) -> None:
        tail = normalize_tail(record["tail"])
        values = {
            "serial": record.get("serial"),
            "make": record.get("make"),
            "model": record.get("model"),
            "type_code": record.get("type_code") or record.get("typeCode"),
            "year": record.get("year"),
            "engine": record.get("engine"),
            "seats": record.get("seats"),
        }
        t = self.aircraft
        with self.engine.begin() as conn:
            exists = conn.execute(select(t.c.tail).where(t.c.tail == tail)).fetchone()
            if exists:
                conn.execute(update(t).where(t.c.tail == tail).values(**values))
            else:
                conn.execute(insert(t).values(tail=tail, **values))

    # owners

    def upsert_owner(self, owner_id: str, name: str, type: Optional[str] = None, state: Optional[str] = None, country: Optional[str] = None) -> None:
        t = self.owners
        values = {"name": name, "type": type, "state": state, "country": country}
        with self.engine.begin() as conn:
            exists = conn.execute(select(t.c.id).where(t.c.id == owner_id)).fetchone()
            if exists:
                conn.execute(update(t).where(t.c.id == owner_id).values(**values))
            else:
                conn.execute(insert(t).values(id=owner_id, **values))

    def link_owner(self, tail: str, owner_id: str, start_date: DateLike = None, end_date: DateLike = None) -> None:
        t = self.aircraft_owners
        tail = normalize_tail(tail)
        start = _as_date(start_date)
        with self.engine.begin() as conn:
            exists = conn.execute(
                select(t.c.id).where(and_(t.c.tail == tail, t.c.owner_id == owner_id, t.c.start_date == start))
            ).fetchone()
            if exists:
                conn.execute(update(t).where(t.c.id == exists.id).values(end_date=_as_date(end_date)))
            else:
                conn.execute(insert(t).values(tail=tail, owner_id=owner_id, start_date=start, end_date=_as_date(end_date)))

    def get_owners(self, tail: str) -> List[Dict[str, Any]]:
        ao, o = self.aircraft_owners, self.owners
        stmt = (
            select(o.c.name, o.c.type, o.c.state, o.c.country, ao.c.start_date, ao.c.end_date)
            .select_from(ao.join(o, ao.c.owner_id == o.c.id))
            .where(ao.c.tail == normalize_tail(tail))
            .order_by(ao.c.start_date.desc())
        )
        with self._conn() as conn:
            rows = conn.execute(stmt).fetchall()
        return [
            {
                "owner": {"name": r.name, "type": r.type, "state": r.state, "country": r.country},
                "startDate": _iso(r.start_date),
                "endDate": _iso(r.end_date),
            }
            for r in rows
        ]

    # accidents

    def add_accident(
        self,
        tail: str,
        date: DateLike = None,
        severity: Optional[str] = None,
        phase: Optional[str] = None,
        lat: Optional[float] = None,
        lon: Optional[float] = None,
        narrative: Optional[str] = None,
        injuries: Optional[int] = None,
        fatalities: Optional[int] = None,
    ) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(insert(self.accidents).values(
                tail=normalize_tail(tail), date=_as_date(date), severity=severity, phase=phase,
                lat=lat, lon=lon, narrative=narrative, injuries=injuries, fatalities=fatalities,
            ))
            return int(result.inserted_primary_key[0])

    def get_accidents(self, tail: str) -> List[Dict[str, Any]]:
        t = self.accidents
        stmt = select(t).where(t.c.tail == normalize_tail(tail)).order_by(t.c.date.desc())
        with self._conn() as conn:
            rows = conn.execute(stmt).fetchall()
        return [
            {
                "date": _iso(r.date),
                "severity": r.severity,
                "phase": r.phase,
                "lat": r.lat,
                "lon": r.lon,
                "narrative": r.narrative,
                "injuries": r.injuries,
                "fatalities": r.fatalities,
            }
            for r in rows
        ]

    # airworthiness directives

    def upsert_directive(
        self,
        ref: str,
        make_model_key: str,
        summary: Optional[str] = None,
        effective_date: DateLike = None,
        status: str = "OPEN",
        severity: Optional[str] = None,
    ) -> None:
        t = self.ad_directives
        values = {
            "make_model_key": make_model_key.lower(),
            "summary": summary,
            "effective_date": _as_date(effective_date),
            "status": status.upper(),
            "severity": severity,
        }
        with self.engine.begin() as conn:
            exists = conn.execute(select(t.c.id).where(t.c.ref == ref)).fetchone()
            if exists:
                conn.execute(update(t).where(t.c.ref == ref).values(**values))
            else:
                conn.execute(insert(t).values(ref=ref, **values))

    def get_directives(self, key: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        """Directives for a make/model key, newest effective date first."""
        t = self.ad_directives
        stmt = select(t).where(t.c.make_model_key == key.lower())
        if status:
            stmt = stmt.where(t.c.status == status.upper())
        stmt = stmt.order_by(t.c.effective_date.desc())
        with self._conn() as conn:
            rows = conn.execute(stmt).fetchall()
        return [
            {
                "ref": r.ref,
                "summary": r.summary,
                "effectiveDate": _iso(r.effective_date),
                "status": r.status,
                "severity": r.severity,
            }
            for r in rows
        ]

    # live positions

    def upsert_live_position(
        self,
        tail: str,
        ts: float,
        lat: float,
        lon: float,
        alt: Optional[float] = None,
        speed: Optional[float] = None,
        heading: Optional[float] = None,
        src: Optional[str] = None,
    ) -> bool:
        """Store a position report; returns True when a new row was inserted."""
        t = self.live_events
        tail = normalize_tail(tail)
        values = {"lat": lat, "lon": lon, "alt": alt, "speed": speed, "heading": heading, "src": src}
        with self.engine.begin() as conn:
            exists = conn.execute(select(t.c.id).where(and_(t.c.tail == tail, t.c.ts == ts))).fetchone()
            if exists:
                conn.execute(update(t).where(t.c.id == exists.id).values(**values))
                return False
            conn.execute(insert(t).values(tail=tail, ts=ts, **values))
            return True

    def _position_stmt(self):
        e, a = self.live_events, self.aircraft
        return select(e, a.c.make, a.c.model).select_from(e.outerjoin(a, e.c.tail == a.c.tail))

    @staticmethod
    def _position_row(row) -> Dict[str, Any]:
        return {
            "tail": row.tail,
            "ts": datetime.fromtimestamp(row.ts, tz=timezone.utc).isoformat(),
            "lat": row.lat,
            "lon": row.lon,
            "alt": row.alt,
            "speed": row.speed,
            "heading": row.heading,
            "src": row.src,
            "aircraft": {"make": row.make or "Unknown", "model": row.model or "Unknown"},
        }

    def latest_position(self, tail: str) -> Optional[Dict[str, Any]]:
        e = self.live_events
        stmt = self._position_stmt().where(e.c.tail == normalize_tail(tail)).order_by(e.c.ts.desc()).limit(1)
        with self._conn() as conn:
            row = conn.execute(stmt).fetchone()
        return self._position_row(row) if row else None

    def recent_positions(self, minutes: int = 30, limit: int = 100, now: Optional[float] = None) -> List[Dict[str, Any]]:
        e = self.live_events
        cutoff = (now if now is not None else time.time()) - minutes * 60
        stmt = self._position_stmt().where(e.c.ts >= cutoff).order_by(e.c.ts.desc()).limit(limit)
        with self._conn() as conn:
            rows = conn.execute(stmt).fetchall()
        return [self._position_row(r) for r in rows]

    def positions_in_region(
        self,
        lat_min: float,
        lat_max: float,
        lon_min: float,
        lon_max: float,
        minutes: int = 30,
        limit: int = 100,
        now: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        e = self.live_events
        cutoff = (now if now is not None else time.time()) - minutes * 60
        stmt = (
            self._position_stmt()
            .where(and_(
                e.c.lat >= lat_min, e.c.lat <= lat_max,
                e.c.lon >= lon_min, e.c.lon <= lon_max,
                e.c.ts >= cutoff,
            ))
            .order_by(e.c.ts.desc())
            .limit(limit)
        )
        with self._conn() as conn:
            rows = conn.execute(stmt).fetchall()
        return [self._position_row(r) for r in rows]

    def track(self, tail: str, hours: int = 24, now: Optional[float] = None) -> List[Dict[str, Any]]:
        """Positions for one aircraft over the last ``hours``, oldest first."""
        e = self.live_events
        cutoff = (now if now is not None else time.time()) - hours * 3600
        stmt = self._position_stmt().where(and_(e.c.tail == normalize_tail(tail), e.c.ts >= cutoff)).order_by(e.c.ts.asc())
        with self._conn() as conn:
            rows = conn.execute(stmt).fetchall()
        return [self._position_row(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


__all__ = ["Storage", "make_model_key", "normalize_tail"]
