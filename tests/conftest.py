from datetime import datetime, timezone

import pytest

import db
from models import Subscription

NOW = datetime(2024, 7, 15, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_FILE", tmp_path / "test.db")
    db._create_tables()
    return db.DB_FILE


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_sub():
    def _make(**overrides):
        fields = dict(
            id="sub-1",
            name="Netflix",
            custom_type="Video",
            amount=15.0,
            currency="USD",
            period_value=1,
            period_unit="month",
            expiry_date=datetime(2024, 8, 1),
        )
        fields.update(overrides)
        return Subscription(**fields)

    return _make
