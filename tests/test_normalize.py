from datetime import datetime

import pytest

from incidentwatch.classify import classify
from incidentwatch.errors import PayloadError
from incidentwatch.normalize import (
    detect_region,
    extract_place_candidates,
    extract_text,
    make_title,
    normalize,
)
from incidentwatch.schema import RawEvent


def _raw(payload, source_type="rss", source_url="https://news.example/a1", **kw):
    return RawEvent(
        source_type=source_type,
        source_label="BBC World",
        source_url=source_url,
        raw_payload=payload,
        content_hash="f" * 64,
        ingested_at=datetime(2026, 10, 17, 12, 0),
        **kw,
    )


def test_extract_text_prefers_text_then_caption_then_title_summary():
    assert extract_text({"text": " Shelling overnight ", "caption": "x"}) == "Shelling overnight"
    assert extract_text({"caption": "Photo of the damaged bridge"}) == "Photo of the damaged bridge"
    assert extract_text({"title": "Bridge hit", "summary": "Traffic halted."}) == "Bridge hit\nTraffic halted."
    assert extract_text({}) == ""


def test_extract_text_rejects_non_mapping():
    with pytest.raises(PayloadError):
        extract_text(["not", "a", "dict"])


def test_place_candidates():
    text = "Shelling reported in Kharkiv overnight; residents fled from Izium on Monday"
    assert extract_place_candidates(text) == ["Kharkiv", "Izium"]
    assert extract_place_candidates("Talks resume in Breaking news") == []


def test_detect_region():
    assert detect_region("Tensions rise across the Middle East") == "Middle East"
    assert detect_region("Nothing regional here") is None


def test_make_title_truncates_and_flattens():
    text = "Line one\r\nline two " + "x" * 200
    title = make_title(text)
    assert "\n" not in title and "\r" not in title
    assert len(title) <= 120


def test_normalize_builds_ai_incident():
    payload = {
        "title": "Protests spread in Tbilisi.",
        "summary": "Crowds gathered in Europe's newest flashpoint as police moved in.",
        "published_at": "2026-10-16T18:30:00+00:00",
    }
    inc = normalize(_raw(payload), classify(extract_text(payload)))

    assert inc.category == "civil_unrest"
    assert inc.severity == 3
    assert inc.confidence == 40
    assert inc.status == "ai"
    assert inc.location == "Tbilisi"
    assert inc.region == "Europe"
    assert inc.sources == ["https://news.example/a1"]
    assert inc.analyst == "RSS-BOT"
    assert inc.datetime == datetime(2026, 10, 16, 18, 30)
    assert inc.lat is None and inc.lng is None


def test_normalize_defaults():
    payload = {"text": "Something happened somewhere without places named"}
    inc = normalize(_raw(payload, source_url=None), classify(payload["text"]))
    assert inc.location == "BBC World"
    assert inc.region == "Global"
    assert inc.sources == []
    assert inc.datetime == datetime(2026, 10, 17, 12, 0)


def test_normalize_requires_both_coordinates():
    payload = {"text": "Rocket strike on warehouse district", "lat": 50.45, "lng": "30.52"}
    inc = normalize(_raw(payload), classify(payload["text"]))
    assert inc.lat is None and inc.lng is None

    payload["lng"] = 30.52
    inc = normalize(_raw(payload), classify(payload["text"]))
    assert (inc.lat, inc.lng) == (50.45, 30.52)


def test_normalize_rejects_empty_text():
    with pytest.raises(PayloadError):
        normalize(_raw({"media": "photo"}), classify(""))
