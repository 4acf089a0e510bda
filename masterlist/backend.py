"""
Persistence boundary for the task store (SQLite).

The store only needs two things from a backend: load every record, and apply
a batch of changes atomically. Anything that fails inside a batch is rolled
back and surfaced as PersistenceError.
"""
import logging
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from .schema import Record, PersistenceError

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


@dataclass(frozen=True)
class Change:
    """One row-level change inside a transaction."""
    op: str                         # "upsert" | "delete"
    record_id: str
    record: Optional[Record] = None

    UPSERT = "upsert"
    DELETE = "delete"

    @classmethod
    def upsert(cls, record: Record) -> "Change":
        return cls(op=cls.UPSERT, record_id=record.record_id, record=record)

    @classmethod
    def delete(cls, record_id: str) -> "Change":
        return cls(op=cls.DELETE, record_id=record_id)


class Backend(ABC):
    """Interface the store persists through."""

    @abstractmethod
    def load_all(self) -> List[Record]:
        """Every stored record. Raise PersistenceError on failure."""

    @abstractmethod
    def apply_transaction(self, changes: Iterable[Change]) -> None:
        """Apply all changes or none. Raise PersistenceError on failure."""

    def close(self) -> None:
        pass


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection in autocommit mode; transactions are explicit."""
    conn = sqlite3.connect(db_path, isolation_level=None)
    conn.row_factory = sqlite3.Row
    if db_path != MEMORY_DB:
        conn.execute("PRAGMA journal_mode = WAL")
    return conn


class SqliteBackend(Backend):
    """SQLite-backed record table."""

    COLUMNS = (
        "record_id", "title", "is_completed", "category",
        "created_at", "completed_at", "rank",
    )

    def __init__(self, db_path: str = None):
        """Initialize backend and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "masterlist" / "masterlist.db")
        self.db_path = str(db_path)
        # An in-memory database only lives as long as its connection.
        self._shared: Optional[sqlite3.Connection] = None
        if self.db_path == MEMORY_DB:
            self._shared = _connect(MEMORY_DB)
        else:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _open(self) -> sqlite3.Connection:
        return self._shared if self._shared is not None else _connect(self.db_path)

    def _release(self, conn: Optional[sqlite3.Connection]) -> None:
        if conn is not None and conn is not self._shared:
            conn.close()

    def _init_schema(self):
        """Create the items table if it doesn't exist."""
        conn = None
        try:
            conn = self._open()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS items (
                    record_id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    is_completed INTEGER NOT NULL DEFAULT 0,
                    category TEXT NOT NULL DEFAULT 'Personal',
                    created_at TEXT NOT NULL,
                    completed_at TEXT,
                    rank INTEGER NOT NULL DEFAULT 0
                )
            """)
            self._migrate_columns(conn)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_items_active_rank ON items(is_completed, rank)")
        except sqlite3.Error as e:
            logger.exception("Failed to initialize %s", self.db_path)
            raise PersistenceError(f"cannot open {self.db_path}: {e}") from e
        finally:
            self._release(conn)

    def _migrate_columns(self, conn):
        """Add columns missing from older databases."""
        existing = {row["name"] for row in conn.execute("PRAGMA table_info(items)")}
        new_columns = [
            ("category", "TEXT NOT NULL DEFAULT 'Personal'"),
            ("completed_at", "TEXT"),
            ("rank", "INTEGER NOT NULL DEFAULT 0"),
        ]
        for col_name, col_type in new_columns:
            if col_name in existing:
                continue
            conn.execute(f"ALTER TABLE items ADD COLUMN {col_name} {col_type}")
            logger.info("items migration: added column %s", col_name)

    def load_all(self) -> List[Record]:
        """Every stored record, in rank order."""
        conn = None
        try:
            conn = self._open()
            rows = conn.execute(
                "SELECT * FROM items ORDER BY rank ASC, created_at DESC"
            ).fetchall()
        except sqlite3.Error as e:
            logger.exception("Failed to load items from %s", self.db_path)
            raise PersistenceError(f"load failed: {e}") from e
        finally:
            self._release(conn)

        records = []
        for row in rows:
            try:
                records.append(self._row_to_record(row))
            except (ValueError, TypeError) as e:
                logger.error("Unreadable row %s in %s: %s", row["record_id"], self.db_path, e)
                raise PersistenceError(f"row {row['record_id']} is corrupt: {e}") from e
        return records

    def apply_transaction(self, changes: Iterable[Change]) -> None:
        """Run every change inside one BEGIN IMMEDIATE ... COMMIT."""
        changes = list(changes)
        if not changes:
            return

        conn = None
        try:
            conn = self._open()
            conn.execute("BEGIN IMMEDIATE")
            for change in changes:
                if change.op == Change.UPSERT:
                    data = change.record.to_dict()
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO items
                        (record_id, title, is_completed, category, created_at, completed_at, rank)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            data["record_id"],
                            data["title"],
                            1 if data["is_completed"] else 0,
                            data["category"],
                            data["created_at"],
                            data["completed_at"],
                            data["rank"],
                        ),
                    )
                elif change.op == Change.DELETE:
                    conn.execute("DELETE FROM items WHERE record_id = ?", (change.record_id,))
                else:
                    raise ValueError(f"Unknown change op: {change.op}")
            conn.execute("COMMIT")
        except (sqlite3.Error, ValueError) as e:
            self._rollback(conn)
            logger.exception("Transaction of %d change(s) failed", len(changes))
            raise PersistenceError(f"transaction failed: {e}") from e
        finally:
            self._release(conn)

    def _rollback(self, conn: Optional[sqlite3.Connection]) -> None:
        if conn is None or not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error:
            logger.warning("ROLLBACK failed on %s", self.db_path)

    def close(self) -> None:
        if self._shared is not None:
            self._shared.close()
            self._shared = None

    def _row_to_record(self, row: sqlite3.Row) -> Record:
        """Convert a database row to a Record."""
        data = dict(row)
        data["is_completed"] = bool(data.get("is_completed", 0))
        return Record.from_dict(data)
