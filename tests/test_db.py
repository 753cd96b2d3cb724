from datetime import datetime

import pytest

from incidentwatch import db
from incidentwatch.errors import DuplicateContentError, PersistenceError
from incidentwatch.schema import RawEvent


def _raw(h="a" * 64, **kw):
    data = {
        "source_type": "telegram",
        "source_label": "@war_monitors",
        "source_url": "https://t.me/war_monitors/10",
        "raw_payload": {"text": "Explosion reported near the port", "message_id": 10},
        "content_hash": h,
    }
    data.update(kw)
    return RawEvent(**data)


def test_insert_and_find_raw_event(con):
    event_id = db.insert_raw_event(con, _raw())
    row = db.find_raw_event_by_hash(con, "a" * 64)
    assert row["id"] == event_id
    assert row["status"] == "raw"
    assert row["raw_payload"] == {"text": "Explosion reported near the port", "message_id": 10}
    assert row["ingested_at"] is not None
    assert row["incident_id"] is None


def test_duplicate_hash_is_rejected_by_store(con):
    db.insert_raw_event(con, _raw())
    with pytest.raises(DuplicateContentError):
        db.insert_raw_event(con, _raw(source_label="@other"))
    assert len(db.query_raw_events(con)) == 1


def test_mark_normalized_sets_back_reference(con):
    event_id = db.insert_raw_event(con, _raw())
    db.mark_raw_event(con, event_id, "normalized", incident_id="inc-1")
    row = db.records(db.select_rows(con, "raw_events", where={"id": event_id}))[0]
    assert row["status"] == "normalized"
    assert row["incident_id"] == "inc-1"
    assert row["normalized_at"] is not None


def test_update_missing_row_raises(con):
    with pytest.raises(PersistenceError):
        db.update_by_id(con, "incidents", "does-not-exist", {"status": "reviewed"})


def test_unknown_table_and_column(con):
    with pytest.raises(ValueError):
        db.select_rows(con, "events")
    with pytest.raises(ValueError):
        db.select_rows(con, "incidents", where={"geo_lat": 1})
    with pytest.raises(ValueError):
        db.select_rows(con, "incidents", order_by=["datetime SIDEWAYS"])


def test_select_rows_filters(con, make_incident):
    a = db.insert_incident(con, make_incident(category="terrorism"))
    b = db.insert_incident(con, make_incident(category="civil_unrest", lat=50.0, lng=36.2))
    db.insert_incident(con, make_incident(category="disinformation", lat=1.0, lng=1.0))

    missing = db.select_rows(con, "incidents", where={"lat": None})
    assert missing["id"].tolist() == [a]

    picked = db.select_rows(con, "incidents", where={"category": ["terrorism", "civil_unrest"]}, order_by=["category"])
    assert picked["id"].tolist() == [b, a]

    assert len(db.select_rows(con, "incidents", limit=2)) == 2


def test_incident_roundtrip(con, make_incident):
    inc_id = db.insert_incident(con, make_incident(sources=["https://t.me/war_monitors/10"]))
    inc = db.get_incident(con, inc_id)
    assert inc.id == inc_id
    assert inc.sources == ["https://t.me/war_monitors/10"]
    assert inc.severity == 5
    assert inc.region == "Global"
    assert inc.lat is None
    assert db.get_incident(con, "nope") is None


def test_query_incidents_filters_and_orders(con, make_incident):
    db.insert_incident(con, make_incident(datetime=datetime(2026, 10, 1), region="Europe"))
    db.insert_incident(con, make_incident(datetime=datetime(2026, 10, 15), region="Europe", category="civil_unrest"))
    db.insert_incident(con, make_incident(datetime=datetime(2026, 10, 16), region="Middle East"))

    df = db.query_incidents(con, since_ts=datetime(2026, 10, 10))
    assert len(df) == 2
    assert df["region"].tolist() == ["Middle East", "Europe"]

    assert len(db.query_incidents(con, region="Europe")) == 2
    assert len(db.query_incidents(con, category="civil_unrest")) == 1
    assert len(db.query_incidents(con, category="all")) == 3


def test_recent_titles_are_lowercased(con, make_incident):
    db.insert_incident(con, make_incident(title="Drone Strike On Depot"))
    assert "drone strike on depot" in db.recent_titles(con, datetime(2000, 1, 1))
    assert db.recent_titles(con, datetime(2100, 1, 1)) == set()


def test_set_incident_coords(con, make_incident):
    inc_id = db.insert_incident(con, make_incident())
    assert db.incidents_missing_coords(con, 10)["id"].tolist() == [inc_id]
    db.set_incident_coords(con, inc_id, 49.99, 36.23)
    assert db.incidents_missing_coords(con, 10).empty
    assert db.get_incident(con, inc_id).lat == pytest.approx(49.99)


def test_cursor_roundtrip(con):
    assert db.get_cursor(con, "telegram") is None
    db.set_cursor(con, "telegram", 1042)
    db.set_cursor(con, "telegram", 1057)
    assert db.get_cursor(con, "telegram") == 1057

    db.set_cursor(con, "rss", {"https://feeds.example/rss": "2026-10-17T08:00:00+00:00"})
    assert db.get_cursor(con, "rss") == {"https://feeds.example/rss": "2026-10-17T08:00:00+00:00"}


def test_delete_by_id(con, make_incident):
    inc_id = db.insert_incident(con, make_incident())
    assert db.delete_by_id(con, "incidents", inc_id) is True
    assert db.delete_by_id(con, "incidents", inc_id) is False
