from datetime import datetime, timedelta, timezone

import pytest

from circulation.library import Library

START = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock handed to Library in place of the wall clock."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: float = 0, hours: float = 0) -> datetime:
        self.now += timedelta(days=days, hours=hours)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_file(tmp_path):
    # Unique database file per test
    return str(tmp_path / "circulation_test.db")


@pytest.fixture
def lib(db_file, clock):
    lib = Library(db_file=db_file, clock=clock)
    yield lib
    lib.close()


@pytest.fixture
def make_item(lib):
    def _make(title="Dune", copies=1, visible=True):
        return lib.add_item(title, copies, visible=visible).unwrap()
    return _make


@pytest.fixture
def make_patron(lib):
    counter = {"n": 0}

    def _make(name=None):
        counter["n"] += 1
        n = counter["n"]
        return lib.add_patron(name or f"Patron {n}", f"patron{n}@example.com").unwrap()
    return _make
