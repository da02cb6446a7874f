import pytest
from datetime import datetime, timezone

from sleepmonitor.database import SleepDatabase
from sleepmonitor.schemas.sleep import SleepRecord


def utc(year: int, month: int, day: int, hour: int = 0) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'sleep_database.db'}"


@pytest.fixture
async def database(db_url):
    db = SleepDatabase(db_url, echo=False)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def store(database):
    return database.sleep_store


@pytest.fixture
def make_record():
    """Factory for SleepRecord values with sensible defaults."""
    def _make(date: datetime = None, **overrides) -> SleepRecord:
        values = {
            "id": 0,
            "date": date or utc(2024, 1, 1),
            "duration": 7.5,
            "quality": 82,
            "heart_rate": 58,
            "step_count": 12,
            "deep_sleep_duration": 1.5,
            "light_sleep_duration": 4.25,
            "rem_sleep_duration": 1.75,
        }
        values.update(overrides)
        return SleepRecord(**values)
    return _make
