# incidentwatch/normalize.py
from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

import config
from incidentwatch.db import utcnow
from incidentwatch.errors import PayloadError
from incidentwatch.schema import Classification, Incident, RawEvent


def _safe_str(x) -> str:
    return "" if x is None else str(x)


def _norm(s: str) -> str:
    s = (_safe_str(s)).strip()
    s = re.sub(r"\s+", " ", s)
    return s


# place phrases
STOP_PLACES = {
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "today", "yesterday", "breaking", "analysis", "update", "exclusive", "report",
    "video", "live", "fighting", "talks", "says", "say", "the",
}

REGION_HINTS = [
    "middle east", "europe", "asia", "africa", "south america", "north america", "latin america",
]

PLACE_PATTERNS = [
    r"\bin\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+){0,3})\b",
    r"\bnear\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+){0,3})\b",
    r"\bat\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+){0,3})\b",
    r"\bfrom\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+){0,3})\b",
]


def extract_place_candidates(text: str) -> List[str]:
    text = re.sub(r"\s+", " ", _safe_str(text)).strip()

    cands: List[str] = []
    for pat in PLACE_PATTERNS:
        for m in re.finditer(pat, text):
            p = _norm(m.group(1))
            if p and p.lower() not in STOP_PLACES:
                cands.append(p)

    out: List[str] = []
    seen = set()
    for c in cands:
        k = c.lower()
        if k not in seen:
            seen.add(k)
            out.append(c)
    return out[:10]


def detect_region(text: str) -> Optional[str]:
    low = _safe_str(text).lower()
    for r in REGION_HINTS:
        if r in low:
            return r.title()
    return None


def extract_text(payload: Dict[str, Any]) -> str:
    """Best text field of a staged payload (telegram: text/caption, rss: title+summary)."""
    if not isinstance(payload, dict):
        raise PayloadError(f"payload must be a mapping, got {type(payload).__name__}")
    text = payload.get("text") or payload.get("caption")
    if not text:
        parts = [payload.get("title"), payload.get("summary")]
        text = "\n".join(_safe_str(p) for p in parts if p)
    return _safe_str(text).strip()


def _payload_dt(payload: Dict[str, Any]) -> Optional[datetime]:
    for key in ("datetime", "published_at"):
        val = payload.get(key)
        if not val:
            continue
        ts = pd.to_datetime(val, errors="coerce", utc=True)
        if not pd.isna(ts):
            return ts.to_pydatetime().replace(tzinfo=None)
    return None


def _coord(val) -> Optional[float]:
    if isinstance(val, bool) or not isinstance(val, (int, float)):
        return None
    return float(val)


def make_title(text: str) -> str:
    return text[: config.TITLE_MAX_LENGTH].replace("\r", " ").replace("\n", " ").strip()


def make_summary(text: str) -> str:
    return text[: config.SUMMARY_MAX_LENGTH]


def normalize(raw: RawEvent, classification: Classification) -> Incident:
    """
    Classified raw event -> canonical incident record (status "ai").
    Raises PayloadError when the payload has no usable text.
    """
    payload = raw.raw_payload
    text = extract_text(payload)
    if not text:
        raise PayloadError(f"raw event {raw.id or raw.content_hash[:12]} has no text")

    places = extract_place_candidates(text)
    location = _norm(payload.get("location")) or (places[0] if places else "") or _norm(raw.source_label)
    region = _norm(payload.get("region")) or detect_region(text) or "Global"
    lat, lng = _coord(payload.get("lat")), _coord(payload.get("lng"))
    if lat is None or lng is None:
        lat = lng = None

    return Incident(
        title=make_title(text),
        summary=make_summary(text),
        category=classification.category,
        severity=classification.severity,
        confidence=classification.confidence,
        region=region,
        country=_norm(payload.get("country")) or None,
        subdivision=_norm(payload.get("subdivision")) or None,
        location=location,
        lat=lat,
        lng=lng,
        status="ai",
        sources=[raw.source_url] if raw.source_url else [],
        analyst=f"{raw.source_type.upper()}-BOT",
        datetime=_payload_dt(payload) or raw.ingested_at or utcnow(),
    )
