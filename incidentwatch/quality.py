# incidentwatch/quality.py
from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from incidentwatch.schema import PipelineStats, QualityBreakdown, SourceStats
from incidentwatch.timeutil import as_utc, round_half_up, to_frame, utc_series

WEIGHTS = {"completeness": 0.4, "geo_precision": 0.3, "source_reliability": 0.3}

# Source reliability tiers
TIER1_SOURCES = {"acled", "gdelt", "reliefweb", "abuseipdb", "alienvault"}
TIER2_SOURCES = {"firecrawl", "telegram", "twitter", "reddit", "meta"}

REQUIRED_FIELDS = ["title", "location", "category", "severity", "datetime"]
OPTIONAL_FIELDS = ["summary", "sources", "country", "region", "subdivision", "confidence"]


def _clamp(score: float) -> int:
    return int(max(0, min(100, score)))


def _filled(v, strict: bool = True) -> bool:
    if v is None or v == "" or v == "unknown":
        return False
    return not strict or v != "Unknown"


def _number(v) -> Optional[float]:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    return None if math.isnan(v) else float(v)


def _decimals(v: float) -> int:
    if float(v).is_integer():
        return 0
    s = repr(float(v))
    return len(s.split(".", 1)[1]) if "." in s and "e" not in s else 0


def source_reliability(source_type: str, payload: Dict[str, Any]) -> Tuple[int, List[str]]:
    flags: List[str] = []
    st = (source_type or "").lower()

    if st in TIER1_SOURCES:
        base = 90
    elif st in TIER2_SOURCES:
        base = 65
    else:
        base = 40
        flags.append("Unknown source type, low trust baseline")

    url = payload.get("source_url")
    if not (isinstance(url, str) and len(url) > 10):
        base -= 10
        flags.append("No source URL for provenance")

    h = payload.get("content_hash")
    if isinstance(h, str) and h:
        base += 5
    return _clamp(base), flags


def completeness(payload: Dict[str, Any]) -> Tuple[int, List[str]]:
    flags: List[str] = []
    filled = 0
    for f in REQUIRED_FIELDS:
        if _filled(payload.get(f)):
            filled += 1
        else:
            flags.append(f"Missing required field: {f}")

    opt = sum(1 for f in OPTIONAL_FIELDS if _filled(payload.get(f), strict=False))
    score = round_half_up(filled / len(REQUIRED_FIELDS) * 70 + opt / len(OPTIONAL_FIELDS) * 30)

    title, summary = payload.get("title"), payload.get("summary")
    if isinstance(title, str) and len(title) < 10:
        flags.append("Title too short (< 10 chars)")
    if isinstance(summary, str) and len(summary) < 20:
        flags.append("Summary too brief")
    return _clamp(score), flags


def geo_precision(payload: Dict[str, Any]) -> Tuple[int, List[str]]:
    flags: List[str] = []
    score = 0

    lat, lng = _number(payload.get("lat")), _number(payload.get("lng"))
    if lat is not None and lng is not None:
        score += 50
        places = _decimals(lat)
        if places >= 4:
            score += 20
        elif places >= 2:
            score += 10
        else:
            flags.append("Low coordinate precision (< 2 decimals)")
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            score -= 30
            flags.append("Coordinates out of valid range")
    else:
        flags.append("Missing lat/lng coordinates")

    loc = payload.get("location") if isinstance(payload.get("location"), str) else ""
    if loc and loc.lower() != "unknown":
        score += 15
        if "," in loc:
            score += 5  # "city, country"
    else:
        flags.append("Missing or unknown location string")

    if payload.get("country") and payload.get("country") != "unknown":
        score += 5
    if payload.get("subdivision"):
        score += 5
    return _clamp(score), flags


def score_raw_event(
    source_type: str,
    payload: Any,
    source_url: Optional[str] = None,
    content_hash: Optional[str] = None,
) -> QualityBreakdown:
    """
    Rates a staged event on completeness, geo precision and source reliability (0-100 each).
    Event-level source_url/content_hash override payload keys of the same name.
    """
    flat = dict(payload) if isinstance(payload, dict) else {}
    flat["source_url"] = source_url
    flat["content_hash"] = content_hash

    comp, comp_flags = completeness(flat)
    geo, geo_flags = geo_precision(flat)
    src, src_flags = source_reliability(source_type, flat)

    overall = round_half_up(
        comp * WEIGHTS["completeness"] + geo * WEIGHTS["geo_precision"] + src * WEIGHTS["source_reliability"]
    )
    return QualityBreakdown(
        completeness=comp,
        geo_precision=geo,
        source_reliability=src,
        overall=int(overall),
        flags=comp_flags + geo_flags + src_flags,
    )


def quality_grade(score: float) -> str:
    if score >= 80:
        return "A"
    if score >= 65:
        return "B"
    if score >= 50:
        return "C"
    if score >= 35:
        return "D"
    return "F"


def pipeline_stats(raw_events, now: Optional[datetime] = None) -> PipelineStats:
    df = to_frame(raw_events)
    if df.empty:
        return PipelineStats()

    by_status = {str(k): int(v) for k, v in df["status"].value_counts(sort=False).items()}

    by_source: Dict[str, SourceStats] = {}
    for st, grp in df.groupby("source_type", sort=False):
        status = grp["status"]
        by_source[str(st)] = SourceStats(
            total=len(grp),
            normalized=int((status == "normalized").sum()),
            failed=int((status == "rejected").sum()),
            duplicate=int((status == "duplicate").sum()),
        )

    ref = as_utc(now)
    ingested = utc_series(df["ingested_at"] if "ingested_at" in df.columns else pd.Series([None] * len(df), index=df.index))
    last_24h = int(((ref - ingested) < pd.Timedelta(hours=24)).sum())
    rejected = int((df["status"] == "rejected").sum())

    return PipelineStats(
        total=len(df),
        by_status=by_status,
        by_source=by_source,
        recent_rate=last_24h / 24,
        error_rate=rejected / len(df) * 100,
    )
