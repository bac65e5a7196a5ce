"""Fixtures compartidas: SQLite en memoria con el esquema creado."""

from datetime import datetime, timezone

import pytest

from common.db import create_sqlite_engine
from consumer_runtime.calendar_policy import CalendarPolicy
from consumer_runtime.persistence import SqlConsumerRepository, ensure_schema
from consumer_runtime.state_tracker import StateTracker


def utc_ms(*args) -> int:
    """epoch ms de una fecha UTC: utc_ms(2024, 1, 15, 23, 50)."""
    return int(datetime(*args, tzinfo=timezone.utc).timestamp()) * 1000


class FakeClock:
    """Reloj manual en epoch ms."""

    def __init__(self, now: int = 0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def engine():
    eng = create_sqlite_engine(":memory:")
    ensure_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def repository(engine) -> SqlConsumerRepository:
    return SqlConsumerRepository(engine)


@pytest.fixture
def utc_calendar() -> CalendarPolicy:
    return CalendarPolicy(timezone="UTC")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(repository, clock) -> StateTracker:
    return StateTracker(repository, clock=clock)
