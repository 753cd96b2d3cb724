# incidentwatch/schema.py
import datetime as dt
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

RawStatus = Literal["raw", "normalized", "rejected", "duplicate"]
IncidentStatus = Literal["ai", "reviewed", "confirmed"]
FeedbackType = Literal["confirmed_correct", "corrected"]
ExposureLevel = Literal["minimal", "low", "moderate", "elevated", "critical"]
TrendDirection = Literal["rising", "falling", "stable"]


# ----------------------------
# Stored records
# ----------------------------
class RawEvent(BaseModel):
    id: Optional[str] = None
    source_type: str              # "telegram" | "rss" | ...
    source_label: str
    source_url: Optional[str] = None
    raw_payload: Dict[str, Any] = Field(default_factory=dict)
    content_hash: str
    status: RawStatus = "raw"
    incident_id: Optional[str] = None
    ingested_at: Optional[dt.datetime] = None
    normalized_at: Optional[dt.datetime] = None


class Incident(BaseModel):
    id: Optional[str] = None
    title: str
    summary: str = ""
    category: str
    severity: int = Field(ge=1, le=5)
    confidence: int = Field(ge=0, le=100)
    region: str = "Global"
    country: Optional[str] = None
    subdivision: Optional[str] = None
    location: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    status: IncidentStatus = "ai"
    sources: List[str] = Field(default_factory=list)
    analyst: Optional[str] = None
    datetime: dt.datetime
    created_at: Optional[dt.datetime] = None


class ClassificationFeedback(BaseModel):
    id: Optional[str] = None
    incident_id: str
    analyst_id: str
    feedback_type: FeedbackType
    original_category: str
    original_severity: int
    original_confidence: int
    corrected_category: Optional[str] = None
    corrected_severity: Optional[int] = Field(default=None, ge=1, le=5)
    corrected_confidence: Optional[int] = Field(default=None, ge=0, le=100)
    notes: Optional[str] = None
    created_at: Optional[dt.datetime] = None


# ----------------------------
# Connector / pipeline records
# ----------------------------
class SourceItem(BaseModel):
    """One candidate item emitted by a source connector."""
    source_type: str
    source_label: str
    source_url: Optional[str] = None
    item_id: str
    text: str
    published_at: Optional[dt.datetime] = None
    raw_payload: Dict[str, Any] = Field(default_factory=dict)


class FetchResult(BaseModel):
    items: List[SourceItem] = Field(default_factory=list)
    next_cursor: Optional[Any] = None
    errors: List[str] = Field(default_factory=list)


class Classification(BaseModel):
    category: str
    severity: int = Field(ge=1, le=5)
    confidence: int = Field(ge=0, le=100)


class SourceSummary(BaseModel):
    source_type: str
    fetched: int = 0
    staged: int = 0
    normalized: int = 0
    duplicates_skipped: int = 0
    rejected: int = 0
    failed: int = 0
    cursor_advanced: bool = False
    errors: List[str] = Field(default_factory=list)


class IngestSummary(BaseModel):
    sources_processed: int = 0
    fetched: int = 0
    staged: int = 0
    normalized: int = 0
    duplicates_skipped: int = 0
    rejected: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
    sources: List[SourceSummary] = Field(default_factory=list)

    def add(self, s: SourceSummary) -> None:
        self.sources_processed += 1
        self.fetched += s.fetched
        self.staged += s.staged
        self.normalized += s.normalized
        self.duplicates_skipped += s.duplicates_skipped
        self.rejected += s.rejected
        self.failed += s.failed
        self.errors.extend(s.errors)
        self.sources.append(s)


class EnrichSummary(BaseModel):
    processed: int = 0
    geocoded: int = 0
    failed: int = 0


# ----------------------------
# Derived analytics (never persisted)
# ----------------------------
class ExposureResult(BaseModel):
    score: int = Field(ge=0, le=100)   # 0-100
    level: ExposureLevel
    nearby_count: int = 0
    dominant_category: Optional[str] = None


class TimeSeriesPoint(BaseModel):
    date: str   # YYYY-MM-DD
    value: float


class ForecastPoint(TimeSeriesPoint):
    lower: float
    upper: float
    method: str


class ForecastResult(BaseModel):
    method: str
    forecast: List[ForecastPoint] = Field(default_factory=list)
    mae: float = 0.0
    mape: float = 0.0
    rmse: float = 0.0


class AutoForecast(BaseModel):
    best: ForecastResult
    all: List[ForecastResult] = Field(default_factory=list)


class SeriesForecast(BaseModel):
    key: str    # "all", a category or a region
    series: List[TimeSeriesPoint]
    forecast: AutoForecast


class CategoryAccuracy(BaseModel):
    correct: int = 0
    total: int = 0
    rate: float = 0.0


class SeverityDrift(BaseModel):
    avg_delta: float = 0.0
    over_estimated: int = 0
    under_estimated: int = 0


class ConfidenceCalibration(BaseModel):
    avg_original: float = 0.0
    avg_corrected_original: float = 0.0


class WeeklyAccuracy(BaseModel):
    week: str   # bucket start date, YYYY-MM-DD
    accuracy: float = 0.0
    total: int = 0


class AccuracyMetrics(BaseModel):
    total_reviewed: int = 0
    confirmed_correct: int = 0
    corrected: int = 0
    accuracy_rate: float = 0.0
    category_accuracy: Dict[str, CategoryAccuracy] = Field(default_factory=dict)
    severity_drift: SeverityDrift = Field(default_factory=SeverityDrift)
    confidence_calibration: ConfidenceCalibration = Field(default_factory=ConfidenceCalibration)
    weekly_trend: List[WeeklyAccuracy] = Field(default_factory=list)


class QualityBreakdown(BaseModel):
    completeness: int
    geo_precision: int
    source_reliability: int
    overall: int
    flags: List[str] = Field(default_factory=list)


class SourceStats(BaseModel):
    total: int = 0
    normalized: int = 0
    failed: int = 0
    duplicate: int = 0


class PipelineStats(BaseModel):
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_source: Dict[str, SourceStats] = Field(default_factory=dict)
    recent_rate: float = 0.0    # events/hour over the last 24h
    error_rate: float = 0.0     # % rejected
