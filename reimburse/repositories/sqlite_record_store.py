"""SQLite-backed record store.

Design Decisions:
- One table holds every collection; documents are stored as a JSON blob
- version is a real column so the optimistic check happens inside the
  UPDATE statement itself (compare-and-swap, no read-then-write gap)
- Connection-per-operation pattern, like the other SQLite repositories
- Retry logic for "database is locked" errors
- Blocking sqlite3 calls run in a worker thread so the store stays async
- list() filters and sorts with json_extract over the JSON blob
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

from reimburse.repositories.record_store import (
    RESERVED_FIELDS,
    Document,
    Filters,
    RecordStore,
    check_field_name,
    filter_values,
    new_record_id,
    parse_sort,
)
from reimburse.utils.helpers.date_utils import utc_now
from reimburse.utils.helpers.exceptions import ConcurrencyConflict, RecordNotFound

T = TypeVar("T")


class SQLiteRecordStore(RecordStore):
    """SQLite persistence for workflow documents.

    Storage Strategy:
        - Single table: records (collection, id, data_json, version, created, updated)
        - Primary key (collection, id)
        - Automatic schema creation on first use

    Thread Safety:
        - Connection-per-operation for file databases
        - A single guarded connection for ":memory:" databases
          (otherwise each new connection creates a fresh empty database)
        - Retry logic for "database is locked" errors (MAX_RETRIES attempts)
    """

    MAX_RETRIES = 3
    RETRY_DELAY_MS = 100  # milliseconds

    def __init__(self, db_path: Optional[str] = None):
        """Initialize store with database path.

        Args:
            db_path: Path to SQLite database file. If None, uses default
                    location at reimburse/data/reimburse.db
        """
        if db_path is None:
            package_dir = Path(__file__).parent.parent
            data_dir = package_dir / "data"
            data_dir.mkdir(exist_ok=True)
            db_path = str(data_dir / "reimburse.db")
        elif db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.db_path = db_path

        self._memory_conn = None
        self._memory_lock = threading.Lock()
        if db_path == ":memory:":
            self._memory_conn = sqlite3.connect(":memory:", check_same_thread=False)
            self._memory_conn.row_factory = sqlite3.Row

        self._init_schema()

    def _get_connection(self) -> sqlite3.Connection:
        if self._memory_conn is not None:
            return self._memory_conn
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        """Create the records table if it doesn't exist."""
        self._execute(self._create_schema)

    @staticmethod
    def _create_schema(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS records (
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                data_json TEXT NOT NULL,
                version INTEGER NOT NULL,
                created TEXT NOT NULL,
                updated TEXT NOT NULL,
                PRIMARY KEY (collection, id)
            )
        """)
        conn.commit()

    def _execute(self, operation: Callable[[sqlite3.Connection], T]) -> T:
        """Run one operation on a connection, retrying while the file is locked."""
        for attempt in range(self.MAX_RETRIES):
            try:
                if self._memory_conn is not None:
                    with self._memory_lock:
                        return operation(self._memory_conn)
                conn = self._get_connection()
                try:
                    return operation(conn)
                finally:
                    conn.close()
            except sqlite3.OperationalError as e:
                if "locked" not in str(e).lower():
                    raise
                if attempt < self.MAX_RETRIES - 1:
                    time.sleep(self.RETRY_DELAY_MS / 1000.0)
                    continue
                raise sqlite3.OperationalError(
                    f"Database locked after {self.MAX_RETRIES} attempts: {e}"
                ) from e
        raise AssertionError("unreachable")

    # -----------------
    # RecordStore API
    # -----------------
    async def get_one(self, collection: str, record_id: str) -> Document:
        return await asyncio.to_thread(self._get_one_sync, collection, record_id)

    async def list(
        self,
        collection: str,
        filters: Optional[Filters] = None,
        sort: Optional[str] = None,
        *,
        created_since: Optional[str] = None,
    ) -> List[Document]:
        return await asyncio.to_thread(self._list_sync, collection, filters, sort, created_since)

    async def create(self, collection: str, data: Document) -> Document:
        return await asyncio.to_thread(self._create_sync, collection, data)

    async def update(
        self,
        collection: str,
        record_id: str,
        fields: Document,
        *,
        expected_version: Optional[int] = None,
    ) -> Document:
        return await asyncio.to_thread(self._update_sync, collection, record_id, fields, expected_version)

    # -----------------
    # Blocking helpers
    # -----------------
    def _get_one_sync(self, collection: str, record_id: str) -> Document:
        def operation(conn: sqlite3.Connection) -> Optional[sqlite3.Row]:
            cursor = conn.execute(
                """
                SELECT id, data_json, version, created, updated
                FROM records
                WHERE collection = ? AND id = ?
                """,
                (collection, record_id),
            )
            return cursor.fetchone()

        row = self._execute(operation)
        if row is None:
            raise RecordNotFound(collection, record_id)
        return self._row_to_document(row)

    @staticmethod
    def _field_expression(field: str) -> str:
        """Column for store-managed fields, json_extract into data_json otherwise."""
        check_field_name(field)
        if field in RESERVED_FIELDS:
            return field
        return f"json_extract(data_json, '$.{field}')"

    def _list_sync(
        self,
        collection: str,
        filters: Optional[Filters],
        sort: Optional[str],
        created_since: Optional[str],
    ) -> List[Document]:
        clauses = ["collection = ?"]
        params: List[object] = [collection]
        for field, value in (filters or {}).items():
            values = filter_values(value)
            if not values:
                return []
            placeholders = ", ".join("?" for _ in values)
            clauses.append(f"{self._field_expression(field)} IN ({placeholders})")
            params.extend(values)
        if created_since is not None:
            clauses.append("created >= ?")
            params.append(created_since)

        sort_field, descending = parse_sort(sort)
        order = f"{self._field_expression(sort_field)} {'DESC' if descending else 'ASC'}, id ASC"
        query = f"""
            SELECT id, data_json, version, created, updated
            FROM records
            WHERE {' AND '.join(clauses)}
            ORDER BY {order}
        """

        def operation(conn: sqlite3.Connection) -> List[sqlite3.Row]:
            return conn.execute(query, params).fetchall()

        return [self._row_to_document(row) for row in self._execute(operation)]

    def _create_sync(self, collection: str, data: Document) -> Document:
        record_id = data.get("id") or new_record_id()
        now = utc_now().isoformat()
        payload = {key: value for key, value in data.items() if key not in RESERVED_FIELDS}

        def operation(conn: sqlite3.Connection) -> None:
            try:
                conn.execute(
                    """
                    INSERT INTO records (collection, id, data_json, version, created, updated)
                    VALUES (?, ?, ?, 1, ?, ?)
                    """,
                    (collection, record_id, json.dumps(payload), now, now),
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise ValueError(f"{collection} record already exists: {record_id}") from e

        self._execute(operation)
        payload.update({"id": record_id, "version": 1, "created": now, "updated": now})
        return payload

    def _update_sync(
        self,
        collection: str,
        record_id: str,
        fields: Document,
        expected_version: Optional[int],
    ) -> Document:
        changes = {key: value for key, value in fields.items() if key not in RESERVED_FIELDS}

        def operation(conn: sqlite3.Connection) -> Document:
            # BEGIN IMMEDIATE takes the write lock before reading, so the merge
            # below and the version bump are one atomic step.
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    """
                    SELECT id, data_json, version, created, updated
                    FROM records
                    WHERE collection = ? AND id = ?
                    """,
                    (collection, record_id),
                ).fetchone()
                if row is None:
                    raise RecordNotFound(collection, record_id)
                if expected_version is not None and row["version"] != expected_version:
                    raise ConcurrencyConflict(collection, record_id, expected_version, row["version"])

                data = json.loads(row["data_json"])
                data.update(changes)
                now = utc_now().isoformat()
                conn.execute(
                    """
                    UPDATE records
                    SET data_json = ?, version = version + 1, updated = ?
                    WHERE collection = ? AND id = ? AND version = ?
                    """,
                    (json.dumps(data), now, collection, record_id, row["version"]),
                )
                conn.commit()
            except BaseException:
                conn.rollback()
                raise

            data.update({
                "id": row["id"],
                "version": row["version"] + 1,
                "created": row["created"],
                "updated": now,
            })
            return data

        return self._execute(operation)

    @staticmethod
    def _row_to_document(row: sqlite3.Row) -> Document:
        document: Document = json.loads(row["data_json"])
        document.update({
            "id": row["id"],
            "version": row["version"],
            "created": row["created"],
            "updated": row["updated"],
        })
        return document

    def count(self, collection: str) -> int:
        """Count documents in a collection (useful for metrics/testing)."""
        def operation(conn: sqlite3.Connection) -> int:
            cursor = conn.execute("SELECT COUNT(*) FROM records WHERE collection = ?", (collection,))
            return cursor.fetchone()[0]

        return self._execute(operation)
