"""Record store: the persistence collaborator, plus its SQLite backend."""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Protocol, runtime_checkable

from traitcore.exceptions import PersistenceError, ValidationError
from traitcore.utils import iso_str, json_dumps, json_loads, utcnow

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

KIND_MEMORY = "memory"
KIND_EMOTIONAL_STATE = "emotional_state"
KIND_TRAIT_BASELINE = "trait_baseline"

ENTITY_KINDS = frozenset({KIND_MEMORY, KIND_EMOTIONAL_STATE, KIND_TRAIT_BASELINE})

_SCHEMA = """
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS records (
    kind TEXT NOT NULL,
    id TEXT NOT NULL,
    fields TEXT NOT NULL DEFAULT '{}',
    updated_at TEXT NOT NULL,
    PRIMARY KEY (kind, id)
);
CREATE INDEX IF NOT EXISTS idx_records_kind ON records(kind);
"""


@runtime_checkable
class RecordStore(Protocol):
    """Key-value record store with transactional batches of saves.

    ``fields`` are flat string/number maps. Composite values are carried as
    opaque encoded blobs by the caller.
    """

    def save(self, kind: str, record_id: str, fields: dict[str, Any]) -> None: ...

    def load(self, kind: str, record_id: str) -> dict[str, Any] | None: ...

    def delete(self, kind: str, record_id: str) -> bool: ...

    def keys(self, kind: str) -> list[str]: ...

    def begin(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


def _check_kind(kind: str) -> None:
    if kind not in ENTITY_KINDS:
        raise ValidationError(f"Unknown entity kind: {kind!r}")


class SQLiteRecordStore:
    """SQLite-backed record store; one row per (kind, id)."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # autocommit mode; batches use explicit BEGIN/COMMIT
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False,
                                     timeout=30.0, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=30000")
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._init_schema()

    def _init_schema(self) -> None:
        for attempt in range(5):
            try:
                cur = self._conn.cursor()
                cur.executescript(_SCHEMA)
                cur.execute(
                    "INSERT OR IGNORE INTO meta(key, value) VALUES (?, ?)",
                    ("schema_version", str(SCHEMA_VERSION)),
                )
                return
            except sqlite3.OperationalError as e:
                if "locked" in str(e) and attempt < 4:
                    time.sleep(2 * (attempt + 1))
                    continue
                raise

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # --- Records ---

    def save(self, kind: str, record_id: str, fields: dict[str, Any]) -> None:
        _check_kind(kind)
        with self._lock:
            try:
                self._conn.execute(
                    """INSERT INTO records(kind, id, fields, updated_at) VALUES (?, ?, ?, ?)
                       ON CONFLICT(kind, id) DO UPDATE SET
                           fields=excluded.fields, updated_at=excluded.updated_at""",
                    (kind, record_id, json_dumps(fields), iso_str(utcnow())),
                )
            except sqlite3.Error as e:
                logger.error("save %s/%s failed: %s", kind, record_id, e)
                raise PersistenceError(f"Failed to save {kind} {record_id}: {e}") from e

    def load(self, kind: str, record_id: str) -> dict[str, Any] | None:
        _check_kind(kind)
        with self._lock:
            try:
                row = self._conn.execute(
                    "SELECT fields FROM records WHERE kind=? AND id=?", (kind, record_id)
                ).fetchone()
            except sqlite3.Error as e:
                raise PersistenceError(f"Failed to load {kind} {record_id}: {e}") from e
        if not row:
            return None
        return json_loads(row["fields"])

    def delete(self, kind: str, record_id: str) -> bool:
        _check_kind(kind)
        with self._lock:
            try:
                cur = self._conn.execute(
                    "DELETE FROM records WHERE kind=? AND id=?", (kind, record_id)
                )
            except sqlite3.Error as e:
                logger.error("delete %s/%s failed: %s", kind, record_id, e)
                raise PersistenceError(f"Failed to delete {kind} {record_id}: {e}") from e
        return cur.rowcount > 0

    def keys(self, kind: str) -> list[str]:
        _check_kind(kind)
        with self._lock:
            rows = self._conn.execute(
                "SELECT id FROM records WHERE kind=? ORDER BY id", (kind,)
            ).fetchall()
        return [r["id"] for r in rows]

    def count(self, kind: str) -> int:
        _check_kind(kind)
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM records WHERE kind=?", (kind,)
            ).fetchone()
        return row[0]

    # --- Transactions ---

    def begin(self) -> None:
        # Held until commit/rollback so batches from other threads serialize.
        self._lock.acquire()
        try:
            if self._tx_depth == 0:
                self._conn.execute("BEGIN")
            self._tx_depth += 1
        except sqlite3.Error as e:
            self._lock.release()
            raise PersistenceError(f"Failed to begin transaction: {e}") from e

    def commit(self) -> None:
        if self._tx_depth == 0:
            raise PersistenceError("commit() without begin()")
        try:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._conn.execute("COMMIT")
        except sqlite3.Error as e:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
            raise PersistenceError(f"Failed to commit transaction: {e}") from e
        finally:
            self._lock.release()

    def rollback(self) -> None:
        depth = self._tx_depth
        if depth == 0:
            return
        try:
            self._tx_depth = 0
            self._conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error("rollback failed: %s", e)
        finally:
            for _ in range(depth):
                self._lock.release()

    @contextmanager
    def transaction(self) -> Iterator[SQLiteRecordStore]:
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()
