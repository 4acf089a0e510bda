"""Shared test fixtures for the masterlist store, views and server."""

from pathlib import Path

import pytest

from masterlist.store import TaskStore

from .fakes import FailingBackend, FakeClock


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep host environment overrides out of the tests."""
    for name in ("MASTERLIST_DB", "MASTERLIST_HOST", "MASTERLIST_PORT",
                 "MASTERLIST_LOG_LEVEL", "MASTERLIST_CONFIG"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "masterlist.db")


@pytest.fixture()
def backend(db_path) -> FailingBackend:
    return FailingBackend(db_path)


@pytest.fixture()
def store(backend, clock) -> TaskStore:
    s = TaskStore(backend, clock=clock)
    yield s
    s.close()
