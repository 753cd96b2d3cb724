# incidentwatch/feedback.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

import duckdb
import pandas as pd

from incidentwatch import db
from incidentwatch.errors import PayloadError, PersistenceError
from incidentwatch.schema import (
    AccuracyMetrics,
    CategoryAccuracy,
    ClassificationFeedback,
    ConfidenceCalibration,
    SeverityDrift,
    WeeklyAccuracy,
)
from incidentwatch.timeutil import as_utc, to_frame, utc_series

log = logging.getLogger(__name__)

TREND_WEEKS = 8


def record_feedback(
    con: duckdb.DuckDBPyConnection,
    incident_id: str,
    analyst_id: str,
    feedback_type: str,
    corrected_category: Optional[str] = None,
    corrected_severity: Optional[int] = None,
    corrected_confidence: Optional[int] = None,
    notes: Optional[str] = None,
) -> ClassificationFeedback:
    """
    Analyst review of an incident. Snapshots the current classification, stores an
    immutable feedback row, then applies the review to the incident.
    """
    incident = db.get_incident(con, incident_id)
    if incident is None:
        raise PersistenceError(f"incident {incident_id} not found")

    if feedback_type == "corrected" and corrected_category is None and corrected_severity is None \
            and corrected_confidence is None:
        raise PayloadError("a correction needs at least one corrected field")

    fb = ClassificationFeedback(
        incident_id=incident_id,
        analyst_id=analyst_id,
        feedback_type=feedback_type,
        original_category=incident.category,
        original_severity=incident.severity,
        original_confidence=incident.confidence,
        corrected_category=corrected_category if feedback_type == "corrected" else None,
        corrected_severity=corrected_severity if feedback_type == "corrected" else None,
        corrected_confidence=corrected_confidence if feedback_type == "corrected" else None,
        notes=notes,
        created_at=db.utcnow(),
    )
    if feedback_type == "confirmed_correct":
        fields = {"status": "confirmed"}
    else:
        fields = {"status": "reviewed"}
        if fb.corrected_category is not None:
            fields["category"] = fb.corrected_category
        if fb.corrected_severity is not None:
            fields["severity"] = fb.corrected_severity
        if fb.corrected_confidence is not None:
            fields["confidence"] = fb.corrected_confidence

    with db.transaction(con):
        fb.id = db.insert_feedback(con, fb)
        db.update_by_id(con, "incidents", incident_id, fields)

    log.info("[FEEDBACK] %s %s by %s", feedback_type, incident_id, analyst_id)
    return fb


def _rate(correct: int, total: int) -> float:
    return correct / total * 100 if total > 0 else 0.0


def aggregate(feedback, now: Optional[datetime] = None) -> AccuracyMetrics:
    df = to_frame(feedback)
    if df.empty:
        return AccuracyMetrics(weekly_trend=_weekly_trend(df, now))

    ok = df["feedback_type"] == "confirmed_correct"
    fixed = df["feedback_type"] == "corrected"
    total = len(df)
    confirmed = int(ok.sum())

    category_accuracy = {}
    for cat, grp in df.groupby("original_category", sort=False):
        correct = int((grp["feedback_type"] == "confirmed_correct").sum())
        category_accuracy[str(cat)] = CategoryAccuracy(correct=correct, total=len(grp), rate=_rate(correct, len(grp)))

    corrections = df[fixed & df["corrected_severity"].notna()] if "corrected_severity" in df.columns else df.iloc[0:0]
    deltas = corrections["corrected_severity"].astype(float) - corrections["original_severity"].astype(float) \
        if not corrections.empty else pd.Series(dtype=float)

    corrected_conf = df.loc[fixed, "original_confidence"].astype(float)
    return AccuracyMetrics(
        total_reviewed=total,
        confirmed_correct=confirmed,
        corrected=int(fixed.sum()),
        accuracy_rate=_rate(confirmed, total),
        category_accuracy=category_accuracy,
        severity_drift=SeverityDrift(
            avg_delta=float(deltas.mean()) if len(deltas) else 0.0,
            over_estimated=int((deltas < 0).sum()),
            under_estimated=int((deltas > 0).sum()),
        ),
        confidence_calibration=ConfidenceCalibration(
            avg_original=float(df["original_confidence"].astype(float).mean()),
            avg_corrected_original=float(corrected_conf.mean()) if len(corrected_conf) else 0.0,
        ),
        weekly_trend=_weekly_trend(df, now),
    )


def _weekly_trend(df: pd.DataFrame, now: Optional[datetime]) -> list:
    # fixed 7-day windows ending at now, oldest first; the last one is the current week
    ref = as_utc(now)
    if df.empty or "created_at" not in df.columns:
        created = pd.Series([], dtype="datetime64[ns, UTC]")
        kinds = pd.Series([], dtype=object)
    else:
        created = utc_series(df["created_at"])
        kinds = df["feedback_type"]

    out = []
    for i in range(TREND_WEEKS - 1, -1, -1):
        start = ref - pd.Timedelta(days=7 * (i + 1))
        end = ref - pd.Timedelta(days=7 * i)
        mask = (created >= start) & ((created < end) if i > 0 else (created <= end))
        n = int(mask.sum())
        correct = int((kinds[mask] == "confirmed_correct").sum()) if n else 0
        out.append(WeeklyAccuracy(week=start.strftime("%Y-%m-%d"), accuracy=_rate(correct, n), total=n))
    return out


def accuracy_metrics(con: duckdb.DuckDBPyConnection, now: Optional[datetime] = None) -> AccuracyMetrics:
    return aggregate(db.query_feedback(con), now)
