# incidentwatch/exposure.py
"""
Composite exposure score for a point or route against the incident corpus.

Per nearby incident: severity/5 x recency x proximity x 20, where recency decays linearly
to 0 at max_age_days and proximity to 0 at radius_km. The sum is amplified by
1 + log2(nearby) * 0.3 so clusters weigh more than isolated events, then capped at 100.
"""
from __future__ import annotations

import math
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from incidentwatch.schema import ExposureResult
from incidentwatch.timeutil import as_utc, round_half_up, to_frame, utc_series

EARTH_RADIUS_KM = 6371.0

LEVEL_THRESHOLDS = [
    (80, "critical"),
    (60, "elevated"),
    (40, "moderate"),
    (20, "low"),
    (0, "minimal"),
]

Point = Union[Tuple[float, float], Dict[str, float]]


def haversine_km(lat1, lng1, lat2, lng2):
    lat1, lng1, lat2, lng2 = (np.radians(np.asarray(v, dtype=float)) for v in (lat1, lng1, lat2, lng2))
    dlat = lat2 - lat1
    dlng = lng2 - lng1
    a = np.sin(dlat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlng / 2) ** 2
    return EARTH_RADIUS_KM * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def exposure_level(score: float) -> str:
    for threshold, level in LEVEL_THRESHOLDS:
        if score >= threshold:
            return level
    return "minimal"


def _geo_incidents(incidents) -> pd.DataFrame:
    df = to_frame(incidents)
    if df.empty or not {"lat", "lng", "severity", "datetime"}.issubset(df.columns):
        return pd.DataFrame(columns=["lat", "lng", "severity", "datetime", "category"])
    df = df.dropna(subset=["lat", "lng"])
    if "category" not in df.columns:
        df["category"] = None
    return df


def _minimal() -> ExposureResult:
    return ExposureResult(score=0, level="minimal", nearby_count=0)


def _check_window(radius_km: float, max_age_days: float) -> None:
    if not radius_km > 0:
        raise ValueError(f"radius_km must be positive, got {radius_km}")
    if not max_age_days > 0:
        raise ValueError(f"max_age_days must be positive, got {max_age_days}")


def compute_exposure(
    lat: float,
    lng: float,
    incidents,
    radius_km: float = 50,
    max_age_days: float = 30,
    now: Optional[datetime] = None,
) -> ExposureResult:
    _check_window(radius_km, max_age_days)
    df = _geo_incidents(incidents)
    if df.empty:
        return _minimal()

    dist = haversine_km(lat, lng, df["lat"].to_numpy(), df["lng"].to_numpy())
    near = dist <= radius_km
    nearby = int(near.sum())
    if nearby == 0:
        return _minimal()

    sub = df[near]
    ref = as_utc(now)
    age_days = (ref - utc_series(sub["datetime"])).dt.total_seconds().to_numpy() / 86400.0
    age_days = np.nan_to_num(np.maximum(age_days, 0.0), nan=float(max_age_days))  # future-dated counts as now

    recency = np.maximum(0.0, 1.0 - age_days / max_age_days)
    proximity = 1.0 - dist[near] / radius_km
    severity = np.clip(sub["severity"].astype(float).to_numpy(), 1, 5) / 5.0

    raw_score = float(np.sum(severity * recency * proximity * 20.0))
    density = 1 + math.log2(nearby) * 0.3
    score = int(max(0, min(100, round_half_up(raw_score * density))))

    cats = Counter(c for c in sub["category"] if c)
    dominant = cats.most_common(1)[0][0] if cats else None

    return ExposureResult(
        score=score,
        level=exposure_level(score),
        nearby_count=nearby,
        dominant_category=dominant,
    )


def _latlng(p: Point) -> Tuple[float, float]:
    if isinstance(p, dict):
        return float(p["lat"]), float(p["lng"])
    return float(p[0]), float(p[1])


def compute_route_exposure(
    points: Sequence[Point],
    incidents,
    radius_km: float = 50,
    max_age_days: float = 30,
    now: Optional[datetime] = None,
) -> ExposureResult:
    """
    Blend of per-waypoint scores: 0.7 x max + 0.3 x mean.
    nearby_count is the largest single-waypoint count, an approximation: it is not the
    deduplicated union of incidents across all waypoints.
    """
    _check_window(radius_km, max_age_days)
    if not points:
        return _minimal()

    df = _geo_incidents(incidents)
    results = [compute_exposure(*_latlng(p), df, radius_km, max_age_days, now) for p in points]
    scores = [r.score for r in results]
    blended = round_half_up(max(scores) * 0.7 + (sum(scores) / len(scores)) * 0.3)
    score = int(max(0, min(100, blended)))
    worst = max(results, key=lambda r: r.score)

    return ExposureResult(
        score=score,
        level=exposure_level(score),
        nearby_count=max(r.nearby_count for r in results),
        dominant_category=worst.dominant_category,
    )


def compute_trend(
    incidents,
    period_days: int = 7,
    filter_fn: Optional[Callable[[Dict[str, Any]], bool]] = None,
    now: Optional[datetime] = None,
) -> str:
    """Recent period_days vs the preceding period of equal length."""
    df = to_frame(incidents)
    if df.empty or "datetime" not in df.columns:
        return "stable"
    if filter_fn is not None:
        df = df[[bool(filter_fn(r)) for r in df.to_dict("records")]]

    ts = utc_series(df["datetime"])
    ref = as_utc(now)
    recent_cutoff = ref - pd.Timedelta(days=period_days)
    prior_cutoff = recent_cutoff - pd.Timedelta(days=period_days)

    recent = int((ts >= recent_cutoff).sum())
    prior = int(((ts >= prior_cutoff) & (ts < recent_cutoff)).sum())
    return trend_direction(recent, prior)


def trend_direction(recent: int, prior: int) -> str:
    if prior == 0 and recent == 0:
        return "stable"
    if prior == 0:
        return "rising"
    ratio = recent / prior
    if ratio > 1.2:
        return "rising"
    if ratio < 0.8:
        return "falling"
    return "stable"
