"""
Tests for the SQLite persistence boundary.
"""
import shutil
import sqlite3
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from masterlist.backend import Backend, Change, SqliteBackend
from masterlist.schema import Category, PersistenceError, Record


def _record(rid, rank=1, **kwargs):
    return Record(
        record_id=rid,
        title=f"Item {rid}",
        created_at=datetime(2025, 6, 5, 9, 0, rank, tzinfo=timezone.utc),
        rank=rank,
        **kwargs,
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Round-trip
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_upsert_and_load():
    """Records written in a transaction load back identically"""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as tmp:
        db_path = tmp.name

    try:
        backend = SqliteBackend(db_path)
        a = _record("a", 1, category=Category.WORK)
        b = _record(
            "b", 2,
            is_completed=True,
            completed_at=datetime(2025, 6, 6, 12, 0, 0, tzinfo=timezone.utc),
        )
        backend.apply_transaction([Change.upsert(a), Change.upsert(b)])

        loaded = SqliteBackend(db_path).load_all()
        assert loaded == [a, b]
    finally:
        Path(db_path).unlink(missing_ok=True)


def test_upsert_replaces_existing_row(tmp_path):
    """Writing the same id twice keeps one row with the latest values"""
    backend = SqliteBackend(str(tmp_path / "m.db"))
    a = _record("a", 1)
    backend.apply_transaction([Change.upsert(a)])
    a.title = "Renamed"
    backend.apply_transaction([Change.upsert(a)])

    loaded = backend.load_all()
    assert len(loaded) == 1
    assert loaded[0].title == "Renamed"


def test_delete(tmp_path):
    backend = SqliteBackend(str(tmp_path / "m.db"))
    backend.apply_transaction([Change.upsert(_record("a", 1)), Change.upsert(_record("b", 2))])
    backend.apply_transaction([Change.delete("a")])
    assert [r.record_id for r in backend.load_all()] == ["b"]


def test_memory_database_survives_between_calls():
    """':memory:' keeps one connection so data outlives a single call"""
    backend = SqliteBackend(":memory:")
    backend.apply_transaction([Change.upsert(_record("a", 1))])
    assert [r.record_id for r in backend.load_all()] == ["a"]
    backend.close()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Atomicity
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_failed_transaction_applies_nothing(tmp_path):
    """A bad change in the middle of a batch rolls back the whole batch"""
    backend = SqliteBackend(str(tmp_path / "m.db"))
    backend.apply_transaction([Change.upsert(_record("keep", 1))])

    bad = Change(op="truncate", record_id="keep")
    with pytest.raises(PersistenceError):
        backend.apply_transaction([
            Change.upsert(_record("new", 2)),
            Change.delete("keep"),
            bad,
        ])

    assert [r.record_id for r in backend.load_all()] == ["keep"]


def test_sqlite_error_is_wrapped(tmp_path):
    """Constraint violations surface as PersistenceError"""
    db_path = str(tmp_path / "m.db")
    backend = SqliteBackend(db_path)
    with sqlite3.connect(db_path) as conn:
        conn.execute("""
            CREATE TRIGGER no_writes BEFORE INSERT ON items
            BEGIN SELECT RAISE(ABORT, 'read only'); END
        """)

    with pytest.raises(PersistenceError):
        backend.apply_transaction([Change.upsert(_record("a", 1))])
    assert backend.load_all() == []


def test_unreachable_database_is_wrapped(tmp_path):
    """Failing to open the database file surfaces as PersistenceError"""
    data_dir = tmp_path / "data"
    backend = SqliteBackend(str(data_dir / "m.db"))
    backend.apply_transaction([Change.upsert(_record("a", 1))])
    shutil.rmtree(data_dir)

    with pytest.raises(PersistenceError):
        backend.apply_transaction([Change.upsert(_record("b", 2))])
    with pytest.raises(PersistenceError):
        backend.load_all()


def test_unopenable_path_is_wrapped(tmp_path):
    """A database path that is a directory fails construction with PersistenceError"""
    with pytest.raises(PersistenceError):
        SqliteBackend(str(tmp_path))


def test_backend_interface_is_abstract():
    """A backend missing apply_transaction cannot be built"""

    class ReadOnly(Backend):
        def load_all(self):
            return []

    with pytest.raises(TypeError):
        ReadOnly()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Schema / decoding
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_unknown_category_tag_loads_as_default(tmp_path):
    db_path = str(tmp_path / "m.db")
    SqliteBackend(db_path)
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "INSERT INTO items (record_id, title, is_completed, category, created_at, rank) "
            "VALUES ('x', 'Legacy', 0, 'Errands', '2025-06-05T09:00:00+00:00', 1)"
        )

    (record,) = SqliteBackend(db_path).load_all()
    assert record.category is Category.PERSONAL
    assert record.title == "Legacy"


def test_missing_columns_are_added(tmp_path):
    """Databases created before rank/category existed are upgraded on open"""
    db_path = str(tmp_path / "old.db")
    with sqlite3.connect(db_path) as conn:
        conn.execute("""
            CREATE TABLE items (
                record_id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                is_completed INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute(
            "INSERT INTO items VALUES ('old', 'From v0', 0, '2025-06-05T09:00:00+00:00')"
        )

    backend = SqliteBackend(db_path)
    with sqlite3.connect(db_path) as conn:
        cols = {row[1] for row in conn.execute("PRAGMA table_info(items)")}
    assert {"category", "completed_at", "rank"} <= cols

    (record,) = backend.load_all()
    assert record.category is Category.PERSONAL
    assert record.rank == 0


@pytest.mark.parametrize("column", ["created_at", "completed_at"])
def test_corrupt_timestamp_is_reported(tmp_path, column):
    """A row with an unreadable timestamp fails the load and names the row"""
    db_path = str(tmp_path / "m.db")
    backend = SqliteBackend(db_path)
    backend.apply_transaction([Change.upsert(_record("bad", 1, is_completed=True))])
    with sqlite3.connect(db_path) as conn:
        conn.execute(f"UPDATE items SET {column} = 'yesterday' WHERE record_id = 'bad'")

    with pytest.raises(PersistenceError, match="bad"):
        backend.load_all()
