from __future__ import annotations

import copy
import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Protocol, runtime_checkable

from loguru import logger

from prose_prime.errors import PersistenceError


@runtime_checkable
class RecordBackend(Protocol):
    """Persists serialized session records keyed by session id."""

    def load(self, session_id: str) -> dict[str, Any] | None: ...
    def save(self, record: dict[str, Any]) -> None: ...
    def remove(self, session_id: str) -> bool: ...
    def list_ids(self, limit: int | None = None) -> list[str]: ...
    def close(self) -> None: ...


class InMemoryBackend:
    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def load(self, session_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._records.get(session_id)
            return copy.deepcopy(record) if record is not None else None

    def save(self, record: dict[str, Any]) -> None:
        with self._lock:
            self._records[record["id"]] = copy.deepcopy(record)

    def remove(self, session_id: str) -> bool:
        with self._lock:
            return self._records.pop(session_id, None) is not None

    def list_ids(self, limit: int | None = None) -> list[str]:
        with self._lock:
            ordered = sorted(
                self._records.values(),
                key=lambda r: (r["updated_at"], r["created_at"]),
                reverse=True,
            )
        ids = [r["id"] for r in ordered]
        return ids if limit is None else ids[: max(0, limit)]

    def close(self) -> None:
        with self._lock:
            self._records.clear()


class SqliteBackend:
    def __init__(self, db_path: str):
        try:
            if db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._initialize_schema()
        except (sqlite3.Error, OSError) as ex:
            raise PersistenceError(f"Cannot open session database {db_path}: {ex}") from ex
        self._lock = threading.Lock()

    def load(self, session_id: str) -> dict[str, Any] | None:
        with self._guard("load"):
            row = self._conn.execute(
                "SELECT record_json FROM sessions WHERE id = ? LIMIT 1",
                (session_id,),
            ).fetchone()
            if row is None:
                return None
            return json.loads(row["record_json"])

    def save(self, record: dict[str, Any]) -> None:
        payload = json.dumps(record, ensure_ascii=True)
        with self._guard("save"), self.transaction():
            self._conn.execute(
                """
                INSERT INTO sessions (id, created_at, updated_at, record_json)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    updated_at = excluded.updated_at,
                    record_json = excluded.record_json
                """,
                (record["id"], record["created_at"], record["updated_at"], payload),
            )

    def remove(self, session_id: str) -> bool:
        with self._guard("remove"), self.transaction():
            cursor = self._conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        return cursor.rowcount > 0

    def list_ids(self, limit: int | None = None) -> list[str]:
        with self._guard("list"):
            rows = self._conn.execute(
                """
                SELECT id
                FROM sessions
                ORDER BY updated_at DESC, created_at DESC
                LIMIT ?
                """,
                (-1 if limit is None else max(0, limit),),
            ).fetchall()
        return [str(row["id"]) for row in rows]

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
        except BaseException:
            self._conn.rollback()
            raise
        self._conn.commit()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        with self._lock:
            try:
                yield
            except (sqlite3.Error, json.JSONDecodeError) as ex:
                logger.error(f"Session database {operation} failed: {ex}")
                raise PersistenceError(f"Session database {operation} failed: {ex}") from ex

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                record_json TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_sessions_updated
                ON sessions(updated_at);
            """
        )
        self._conn.commit()
