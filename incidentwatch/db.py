# incidentwatch/db.py
from __future__ import annotations

import json
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Union

import duckdb
import pandas as pd

import config
from incidentwatch.errors import DuplicateContentError, PersistenceError
from incidentwatch.schema import ClassificationFeedback, Incident, RawEvent

# Canonical schema order per table (we insert by name, but keep these lists as truth)
RAW_EVENT_COLUMNS: List[str] = [
    "id",
    "source_type",
    "source_label",
    "source_url",
    "raw_payload",
    "content_hash",
    "status",
    "incident_id",
    "ingested_at",
    "normalized_at",
]

INCIDENT_COLUMNS: List[str] = [
    "id",
    "title",
    "summary",
    "category",
    "severity",
    "confidence",
    "region",
    "country",
    "subdivision",
    "location",
    "lat",
    "lng",
    "status",
    "sources",
    "analyst",
    "datetime",
    "created_at",
]

FEEDBACK_COLUMNS: List[str] = [
    "id",
    "incident_id",
    "analyst_id",
    "feedback_type",
    "original_category",
    "original_severity",
    "original_confidence",
    "corrected_category",
    "corrected_severity",
    "corrected_confidence",
    "notes",
    "created_at",
]

CURSOR_COLUMNS: List[str] = ["source_type", "cursor", "updated_at"]

TABLES: Dict[str, List[str]] = {
    "raw_events": RAW_EVENT_COLUMNS,
    "incidents": INCIDENT_COLUMNS,
    "classification_feedback": FEEDBACK_COLUMNS,
    "source_cursors": CURSOR_COLUMNS,
}

# stored as JSON text
JSON_COLUMNS = {"raw_payload", "sources", "cursor"}

_DDL = [
    """
    CREATE TABLE IF NOT EXISTS raw_events (
      id VARCHAR PRIMARY KEY,
      source_type VARCHAR NOT NULL,
      source_label VARCHAR,
      source_url VARCHAR,
      raw_payload VARCHAR,
      content_hash VARCHAR NOT NULL UNIQUE,
      status VARCHAR NOT NULL,
      incident_id VARCHAR,
      ingested_at TIMESTAMP,
      normalized_at TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS incidents (
      id VARCHAR PRIMARY KEY,
      title VARCHAR NOT NULL,
      summary VARCHAR,
      category VARCHAR NOT NULL,
      severity INTEGER NOT NULL,
      confidence INTEGER NOT NULL,
      region VARCHAR,
      country VARCHAR,
      subdivision VARCHAR,
      location VARCHAR,
      lat DOUBLE,
      lng DOUBLE,
      status VARCHAR NOT NULL,
      sources VARCHAR,
      analyst VARCHAR,
      datetime TIMESTAMP,
      created_at TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS classification_feedback (
      id VARCHAR PRIMARY KEY,
      incident_id VARCHAR NOT NULL,
      analyst_id VARCHAR NOT NULL,
      feedback_type VARCHAR NOT NULL,
      original_category VARCHAR,
      original_severity INTEGER,
      original_confidence INTEGER,
      corrected_category VARCHAR,
      corrected_severity INTEGER,
      corrected_confidence INTEGER,
      notes VARCHAR,
      created_at TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS source_cursors (
      source_type VARCHAR PRIMARY KEY,
      cursor VARCHAR,
      updated_at TIMESTAMP
    );
    """,
]


def utcnow() -> datetime:
    # naive UTC, duckdb TIMESTAMP
    return datetime.now(timezone.utc).replace(tzinfo=None)


def connect(path: Optional[Union[str, Path]] = None) -> duckdb.DuckDBPyConnection:
    con = duckdb.connect(str(path or config.DB_PATH))
    for ddl in _DDL:
        con.execute(ddl)
    return con


@contextmanager
def transaction(con: duckdb.DuckDBPyConnection) -> Iterator[duckdb.DuckDBPyConnection]:
    """All writes inside the block commit together or not at all."""
    try:
        con.begin()
    except duckdb.Error as e:
        raise PersistenceError(f"begin failed: {e}") from e
    try:
        yield con
    except Exception:
        con.rollback()
        raise
    try:
        con.commit()
    except duckdb.Error as e:
        raise PersistenceError(f"commit failed: {e}") from e


# ----------------------------
# Generic operations
# ----------------------------
def _columns(table: str) -> List[str]:
    if table not in TABLES:
        raise ValueError(f"Unknown table: {table}")
    return TABLES[table]


def _check_column(table: str, col: str) -> str:
    if col not in _columns(table):
        raise ValueError(f"Unknown column {table}.{col}")
    return col


def _encode(col: str, value: Any) -> Any:
    if col in JSON_COLUMNS and value is not None:
        return json.dumps(value, default=str)
    return value


def _decode_frame(df: pd.DataFrame) -> pd.DataFrame:
    for col in JSON_COLUMNS:
        if col in df.columns:
            df[col] = df[col].apply(lambda v: json.loads(v) if isinstance(v, str) and v else v)
    return df


def records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """DataFrame -> list of dicts with NaN/NaT turned into None."""
    if df is None or df.empty:
        return []
    clean = df.astype(object).where(pd.notna(df), None)
    return clean.to_dict("records")


def select_rows(
    con: duckdb.DuckDBPyConnection,
    table: str,
    where: Optional[Dict[str, Any]] = None,
    order_by: Optional[Iterable[str]] = None,
    limit: Optional[int] = None,
) -> pd.DataFrame:
    """
    SELECT with equality filters and ordering.
    - where: {column: value}; None matches NULL, a list/set matches IN (...)
    - order_by: ["created_at DESC", "id"]
    """
    cols = _columns(table)
    wh: List[str] = []
    params: List[Any] = []

    for col, val in (where or {}).items():
        _check_column(table, col)
        if val is None:
            wh.append(f"{col} IS NULL")
        elif isinstance(val, (list, tuple, set)):
            vals = list(val)
            if not vals:
                wh.append("FALSE")
                continue
            wh.append(f"{col} IN ({', '.join('?' for _ in vals)})")
            params.extend(_encode(col, v) for v in vals)
        else:
            wh.append(f"{col} = ?")
            params.append(_encode(col, val))

    q = f"SELECT {', '.join(cols)} FROM {table}"
    if wh:
        q += " WHERE " + " AND ".join(wh)

    if order_by:
        parts = []
        for term in order_by:
            name, _, direction = term.partition(" ")
            direction = direction.strip().upper() or "ASC"
            if direction not in ("ASC", "DESC"):
                raise ValueError(f"Bad sort direction: {term}")
            parts.append(f"{_check_column(table, name)} {direction}")
        q += " ORDER BY " + ", ".join(parts)

    if limit is not None:
        q += " LIMIT ?"
        params.append(int(limit))

    df = con.execute(q, params).df()
    return _decode_frame(df)


def insert_row(con: duckdb.DuckDBPyConnection, table: str, row: Dict[str, Any]) -> str:
    cols = _columns(table)
    data = {k: v for k, v in row.items() if k in cols}
    if "id" in cols and not data.get("id"):
        data["id"] = str(uuid.uuid4())

    names = list(data.keys())
    placeholders = ", ".join("?" for _ in names)
    values = [_encode(c, data[c]) for c in names]

    try:
        con.execute(f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders})", values)
    except duckdb.ConstraintException as e:
        raise DuplicateContentError(f"{table}: {e}") from e
    except duckdb.Error as e:
        raise PersistenceError(f"{table} insert failed: {e}") from e
    return data.get("id") or data.get(names[0])


def update_by_id(con: duckdb.DuckDBPyConnection, table: str, row_id: str, fields: Dict[str, Any]) -> None:
    if not fields:
        return
    sets = ", ".join(f"{_check_column(table, c)} = ?" for c in fields)
    values = [_encode(c, v) for c, v in fields.items()]
    try:
        hit = con.execute(f"UPDATE {table} SET {sets} WHERE id = ? RETURNING id", values + [row_id]).fetchall()
    except duckdb.ConstraintException as e:
        raise DuplicateContentError(f"{table}: {e}") from e
    except duckdb.Error as e:
        raise PersistenceError(f"{table} update failed: {e}") from e
    if not hit:
        raise PersistenceError(f"{table}: no row with id {row_id}")


def delete_by_id(con: duckdb.DuckDBPyConnection, table: str, row_id: str) -> bool:
    _columns(table)
    try:
        hit = con.execute(f"DELETE FROM {table} WHERE id = ? RETURNING id", [row_id]).fetchall()
    except duckdb.Error as e:
        raise PersistenceError(f"{table} delete failed: {e}") from e
    return bool(hit)


# ----------------------------
# Raw events
# ----------------------------
def find_raw_event_by_hash(con: duckdb.DuckDBPyConnection, content_hash: str) -> Optional[Dict[str, Any]]:
    rows = records(select_rows(con, "raw_events", where={"content_hash": content_hash}, limit=1))
    return rows[0] if rows else None


def insert_raw_event(con: duckdb.DuckDBPyConnection, event: RawEvent) -> str:
    row = event.model_dump()
    row["ingested_at"] = row.get("ingested_at") or utcnow()
    return insert_row(con, "raw_events", row)


def mark_raw_event(
    con: duckdb.DuckDBPyConnection,
    event_id: str,
    status: str,
    incident_id: Optional[str] = None,
) -> None:
    fields: Dict[str, Any] = {"status": status}
    if status == "normalized":
        fields["incident_id"] = incident_id
        fields["normalized_at"] = utcnow()
    update_by_id(con, "raw_events", event_id, fields)


def query_raw_events(
    con: duckdb.DuckDBPyConnection,
    status: Optional[str] = None,
    limit: Optional[int] = 500,
) -> pd.DataFrame:
    where = {"status": status} if status else None
    return select_rows(con, "raw_events", where=where, order_by=["ingested_at DESC"], limit=limit)


# ----------------------------
# Incidents
# ----------------------------
def insert_incident(con: duckdb.DuckDBPyConnection, incident: Incident) -> str:
    row = incident.model_dump()
    row["created_at"] = row.get("created_at") or utcnow()
    return insert_row(con, "incidents", row)


def get_incident(con: duckdb.DuckDBPyConnection, incident_id: str) -> Optional[Incident]:
    rows = records(select_rows(con, "incidents", where={"id": incident_id}, limit=1))
    return Incident(**rows[0]) if rows else None


def query_incidents(
    con: duckdb.DuckDBPyConnection,
    since_ts: Optional[datetime] = None,
    category: Optional[str] = None,
    region: Optional[str] = None,
) -> pd.DataFrame:
    cols = ", ".join(INCIDENT_COLUMNS)
    wh = ["1 = 1"]
    params: List[Any] = []

    if since_ts:
        wh.append("datetime >= ?")
        params.append(since_ts)
    if category and category != "all":
        wh.append("category = ?")
        params.append(category)
    if region and region != "all":
        wh.append("region = ?")
        params.append(region)

    where_sql = " AND ".join(wh)
    q = f"""
    SELECT {cols} FROM incidents
    WHERE {where_sql}
    ORDER BY datetime DESC, severity DESC
    """
    return _decode_frame(con.execute(q, params).df())


def recent_titles(con: duckdb.DuckDBPyConnection, since_ts: datetime) -> Set[str]:
    rows = con.execute("SELECT lower(title) FROM incidents WHERE created_at >= ?", [since_ts]).fetchall()
    return {r[0] for r in rows if r[0]}


def incidents_missing_coords(con: duckdb.DuckDBPyConnection, limit: int) -> pd.DataFrame:
    q = """
    SELECT id, location, country, subdivision FROM incidents
    WHERE lat IS NULL
    ORDER BY created_at DESC
    LIMIT ?
    """
    return con.execute(q, [int(limit)]).df()


def set_incident_coords(con: duckdb.DuckDBPyConnection, incident_id: str, lat: float, lng: float) -> None:
    update_by_id(con, "incidents", incident_id, {"lat": float(lat), "lng": float(lng)})


# ----------------------------
# Feedback (append-only)
# ----------------------------
def insert_feedback(con: duckdb.DuckDBPyConnection, fb: ClassificationFeedback) -> str:
    row = fb.model_dump()
    row["created_at"] = row.get("created_at") or utcnow()
    return insert_row(con, "classification_feedback", row)


def query_feedback(con: duckdb.DuckDBPyConnection) -> pd.DataFrame:
    return select_rows(con, "classification_feedback", order_by=["created_at DESC"])


# ----------------------------
# Connector cursors
# ----------------------------
def get_cursor(con: duckdb.DuckDBPyConnection, source_type: str) -> Any:
    rows = records(select_rows(con, "source_cursors", where={"source_type": source_type}, limit=1))
    return rows[0]["cursor"] if rows else None


def set_cursor(con: duckdb.DuckDBPyConnection, source_type: str, cursor: Any) -> None:
    # Upsert manual: delete then insert
    try:
        con.execute("DELETE FROM source_cursors WHERE source_type = ?", [source_type])
        con.execute(
            "INSERT INTO source_cursors (source_type, cursor, updated_at) VALUES (?, ?, ?)",
            [source_type, _encode("cursor", cursor), utcnow()],
        )
    except duckdb.Error as e:
        raise PersistenceError(f"cursor save failed for {source_type}: {e}") from e
