from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from incidentwatch import db
from incidentwatch.errors import PayloadError, PersistenceError
from incidentwatch.feedback import accuracy_metrics, aggregate, record_feedback
from incidentwatch.schema import ClassificationFeedback

NOW = datetime(2026, 10, 18, 12, 0)


def _fb(kind="confirmed_correct", category="terrorism", severity=5, confidence=40, corrected_severity=None, age_days=1):
    return ClassificationFeedback(
        incident_id="inc",
        analyst_id="analyst-1",
        feedback_type=kind,
        original_category=category,
        original_severity=severity,
        original_confidence=confidence,
        corrected_severity=corrected_severity,
        created_at=NOW - timedelta(days=age_days),
    )


def test_accuracy_rate():
    """7 confirmations out of 10 reviews is 70% accuracy."""
    records = [_fb() for _ in range(7)] + [_fb("corrected", corrected_severity=4) for _ in range(3)]
    m = aggregate(records, now=NOW)
    assert m.total_reviewed == 10
    assert m.confirmed_correct == 7
    assert m.corrected == 3
    assert m.accuracy_rate == pytest.approx(70.0)


def test_empty_feedback():
    m = aggregate([], now=NOW)
    assert m.total_reviewed == 0
    assert m.accuracy_rate == 0.0
    assert m.category_accuracy == {}
    assert len(m.weekly_trend) == 8
    assert all(w.total == 0 and w.accuracy == 0.0 for w in m.weekly_trend)


def test_category_accuracy_uses_original_category():
    records = [_fb(category="terrorism"), _fb("corrected", category="terrorism"), _fb(category="civil_unrest")]
    m = aggregate(records, now=NOW)
    assert m.category_accuracy["terrorism"].correct == 1
    assert m.category_accuracy["terrorism"].total == 2
    assert m.category_accuracy["terrorism"].rate == pytest.approx(50.0)
    assert m.category_accuracy["civil_unrest"].rate == pytest.approx(100.0)


def test_severity_drift():
    records = [
        _fb("corrected", severity=5, corrected_severity=3),
        _fb("corrected", severity=5, corrected_severity=4),
        _fb("corrected", severity=2, corrected_severity=4),
        _fb("corrected", severity=3),  # category-only correction
        _fb(),
    ]
    drift = aggregate(records, now=NOW).severity_drift
    assert drift.avg_delta == pytest.approx((-2 - 1 + 2) / 3)
    assert drift.over_estimated == 2
    assert drift.under_estimated == 1


def test_confidence_calibration():
    records = [_fb(confidence=40), _fb(confidence=80), _fb("corrected", confidence=30)]
    cal = aggregate(records, now=NOW).confidence_calibration
    assert cal.avg_original == pytest.approx(50.0)
    assert cal.avg_corrected_original == pytest.approx(30.0)


def test_weekly_trend_buckets():
    records = [_fb(age_days=1), _fb("corrected", age_days=2), _fb(age_days=10), _fb(age_days=90)]
    trend = aggregate(records, now=NOW).weekly_trend

    assert [w.week for w in trend][0] == "2026-08-23"
    assert trend[-1].week == "2026-10-11"
    assert trend[-1].total == 2
    assert trend[-1].accuracy == pytest.approx(50.0)
    assert trend[-2].total == 1
    assert sum(w.total for w in trend) == 3


def test_record_feedback_confirms(con, make_incident):
    inc_id = db.insert_incident(con, make_incident())
    fb = record_feedback(con, inc_id, "analyst-7", "confirmed_correct", notes="matches wire reports")

    assert fb.id
    assert fb.original_category == "terrorism"
    assert fb.original_severity == 5
    assert db.get_incident(con, inc_id).status == "confirmed"


def test_record_feedback_applies_correction(con, make_incident):
    inc_id = db.insert_incident(con, make_incident())
    record_feedback(con, inc_id, "analyst-7", "corrected", corrected_category="political_violence",
                    corrected_severity=3, corrected_confidence=85)

    inc = db.get_incident(con, inc_id)
    assert (inc.status, inc.category, inc.severity, inc.confidence) == ("reviewed", "political_violence", 3, 85)

    stored = db.records(db.query_feedback(con))
    assert len(stored) == 1
    assert stored[0]["original_category"] == "terrorism"
    assert stored[0]["original_confidence"] == 40
    assert stored[0]["corrected_category"] == "political_violence"

    m = accuracy_metrics(con)
    assert m.corrected == 1
    assert m.severity_drift.over_estimated == 1


def test_correction_needs_a_field(con, make_incident):
    inc_id = db.insert_incident(con, make_incident())
    with pytest.raises(PayloadError):
        record_feedback(con, inc_id, "analyst-7", "corrected")
    assert db.query_feedback(con).empty


def test_failed_incident_update_discards_feedback(con, make_incident):
    inc_id = db.insert_incident(con, make_incident())
    with patch("incidentwatch.db.update_by_id", side_effect=PersistenceError("incidents update failed")):
        with pytest.raises(PersistenceError):
            record_feedback(con, inc_id, "analyst-7", "corrected", corrected_severity=2)

    assert db.query_feedback(con).empty
    inc = db.get_incident(con, inc_id)
    assert (inc.status, inc.severity) == (make_incident().status, 5)


def test_feedback_for_unknown_incident(con):
    with pytest.raises(PersistenceError):
        record_feedback(con, "missing", "analyst-7", "confirmed_correct")
