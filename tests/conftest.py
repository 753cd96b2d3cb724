from datetime import datetime

import pytest

from incidentwatch import db
from incidentwatch.schema import Incident


@pytest.fixture
def con():
    c = db.connect(":memory:")
    yield c
    c.close()


@pytest.fixture
def make_incident():
    def _make(**overrides):
        data = {
            "title": "Armed group attacks checkpoint near border town",
            "summary": "Armed group attacks checkpoint near border town",
            "category": "terrorism",
            "severity": 5,
            "confidence": 40,
            "location": "Kharkiv",
            "country": "Ukraine",
            "datetime": datetime(2026, 10, 17, 9, 30),
        }
        data.update(overrides)
        return Incident(**data)

    return _make
