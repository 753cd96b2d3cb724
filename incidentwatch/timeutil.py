# incidentwatch/timeutil.py
import math
from datetime import datetime, timezone
from typing import Any, Optional, Union

import pandas as pd
from dateutil import parser
from pydantic import BaseModel


def as_utc(dt: Optional[Union[str, datetime]] = None) -> pd.Timestamp:
    """Scalar -> tz-aware UTC Timestamp. Naive values are taken as UTC; None means now."""
    if dt is None:
        return pd.Timestamp(datetime.now(timezone.utc))
    if isinstance(dt, str):
        dt = parser.parse(dt)
    ts = pd.Timestamp(dt)
    return ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")


def utc_series(values: pd.Series) -> pd.Series:
    return pd.to_datetime(values, utc=True, errors="coerce")


def to_frame(rows: Any) -> pd.DataFrame:
    """DataFrame, list of dicts or list of pydantic models -> DataFrame (copy)."""
    if rows is None:
        return pd.DataFrame()
    if isinstance(rows, pd.DataFrame):
        return rows.copy()
    out = []
    for r in rows:
        out.append(r.model_dump() if isinstance(r, BaseModel) else dict(r))
    return pd.DataFrame(out)


def round_half_up(x: float, ndigits: int = 0) -> float:
    # python round() is banker's rounding; scores and forecasts round .5 up
    q = 10 ** ndigits
    return math.floor(x * q + 0.5) / q
