from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from traitcore.storage import SQLiteRecordStore

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, hours: float = 0.0, seconds: float = 0.0) -> datetime:
        self.now = self.now + timedelta(hours=hours, seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    s = SQLiteRecordStore(tmp_path / "records.db")
    yield s
    s.close()
