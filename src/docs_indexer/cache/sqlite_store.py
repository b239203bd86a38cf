from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from docs_indexer.cache.models import CacheRecord, Lease, LeaseGrant, SourceStats, Validators
from docs_indexer.cache.utils import from_epoch, new_holder_token, to_epoch, utc_now
from docs_indexer.errors import StoreUnavailable

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_records (
    id TEXT PRIMARY KEY,
    source TEXT,
    etag TEXT,
    last_modified TEXT,
    content_hash TEXT,
    body_ref TEXT,
    last_checked_at REAL,
    indexed INTEGER NOT NULL DEFAULT 0,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    CHECK (indexed = 0 OR content_hash IS NOT NULL),
    CHECK (content_hash IS NULL OR body_ref IS NOT NULL)
);

CREATE INDEX IF NOT EXISTS idx_cache_records_source ON cache_records(source);
CREATE INDEX IF NOT EXISTS idx_cache_records_indexed ON cache_records(indexed);
CREATE INDEX IF NOT EXISTS idx_cache_records_updated_at ON cache_records(updated_at);
CREATE INDEX IF NOT EXISTS idx_cache_records_last_checked_at ON cache_records(last_checked_at);

CREATE TABLE IF NOT EXISTS leases (
    name TEXT PRIMARY KEY,
    holder TEXT NOT NULL,
    acquired_at REAL NOT NULL,
    expires_at REAL NOT NULL
);
"""

_UPSERT_SQL = """
INSERT INTO cache_records (
    id, source, etag, last_modified, content_hash, body_ref,
    last_checked_at, indexed, created_at, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    source = excluded.source,
    etag = excluded.etag,
    last_modified = excluded.last_modified,
    content_hash = excluded.content_hash,
    body_ref = excluded.body_ref,
    last_checked_at = excluded.last_checked_at,
    indexed = excluded.indexed,
    updated_at = excluded.updated_at
"""


def _row_to_record(row: sqlite3.Row) -> CacheRecord:
    return CacheRecord(
        id=row["id"],
        source=row["source"],
        validators=Validators(etag=row["etag"], last_modified=row["last_modified"]),
        content_hash=row["content_hash"],
        body_ref=row["body_ref"],
        last_checked_at=from_epoch(row["last_checked_at"]),
        indexed=bool(row["indexed"]),
        created_at=from_epoch(row["created_at"]),
        updated_at=from_epoch(row["updated_at"]),
    )


class SqliteMetadataStore:
    """
    MetadataStore backed by a single SQLite database file.

    The file is opened in WAL mode so several processes can share it. Lease
    changes run under BEGIN IMMEDIATE, which takes the database write lock
    before the existing lease is read.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._path = Path(path)
        self._busy_timeout_seconds = busy_timeout_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None
        self._connection()

    def __enter__(self) -> SqliteMetadataStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is not None:
            return self._conn
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self._path),
                timeout=self._busy_timeout_seconds,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.executescript(_SCHEMA)
        except (OSError, sqlite3.Error) as e:
            raise StoreUnavailable(f"Failed to open metadata store at {self._path}: {e}") from e
        self._conn = conn
        logger.debug("Metadata store opened. path=%s", self._path)
        return conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise StoreUnavailable(f"Metadata store write failed: {e}") from e
            except BaseException:
                self._rollback(conn)
                raise

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._connection()
            try:
                yield conn
            except sqlite3.Error as e:
                raise StoreUnavailable(f"Metadata store read failed: {e}") from e

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error:
            logger.exception("Metadata store rollback failed.")

    def _now(self) -> datetime:
        return self._clock()

    def _record_params(self, record: CacheRecord, now_ts: float) -> tuple:
        record.validate()
        created_at = to_epoch(record.created_at)
        return (
            record.id,
            record.source,
            record.validators.etag,
            record.validators.last_modified,
            record.content_hash,
            record.body_ref,
            to_epoch(record.last_checked_at),
            1 if record.indexed else 0,
            created_at if created_at is not None else now_ts,
            now_ts,
        )

    # Cache records

    def get(self, resource_id: str) -> Optional[CacheRecord]:
        with self._reading() as conn:
            row = conn.execute("SELECT * FROM cache_records WHERE id = ?", (resource_id,)).fetchone()
        if row is None:
            return None
        return _row_to_record(row)

    def upsert(self, record: CacheRecord) -> None:
        now_ts = to_epoch(self._now())
        params = self._record_params(record, now_ts)
        with self._transaction() as conn:
            conn.execute(_UPSERT_SQL, params)

    def bulk_upsert(self, records: Iterable[CacheRecord]) -> int:
        now_ts = to_epoch(self._now())
        params = [self._record_params(record, now_ts) for record in records]
        if not params:
            return 0
        with self._transaction() as conn:
            conn.executemany(_UPSERT_SQL, params)
        return len(params)

    def query(
        self,
        *,
        source: Optional[str] = None,
        indexed: Optional[bool] = None,
        updated_after: Optional[datetime] = None,
        updated_before: Optional[datetime] = None,
        checked_before: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[CacheRecord]:
        clauses: list[str] = []
        params: list[object] = []
        if source is not None:
            clauses.append("source = ?")
            params.append(source)
        if indexed is not None:
            clauses.append("indexed = ?")
            params.append(1 if indexed else 0)
        if updated_after is not None:
            clauses.append("updated_at >= ?")
            params.append(to_epoch(updated_after))
        if updated_before is not None:
            clauses.append("updated_at <= ?")
            params.append(to_epoch(updated_before))
        if checked_before is not None:
            clauses.append("(last_checked_at IS NULL OR last_checked_at < ?)")
            params.append(to_epoch(checked_before))

        sql = "SELECT * FROM cache_records"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY updated_at DESC, id ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        with self._reading() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_record(row) for row in rows]

    def aggregate_by_source(self) -> list[SourceStats]:
        sql = """
            SELECT source,
                   COUNT(*) AS total,
                   COALESCE(SUM(indexed), 0) AS indexed_count,
                   MAX(updated_at) AS last_updated
            FROM cache_records
            WHERE source IS NOT NULL
            GROUP BY source
            ORDER BY source
        """
        with self._reading() as conn:
            rows = conn.execute(sql).fetchall()
        return [
            SourceStats(
                source=row["source"],
                total=int(row["total"]),
                indexed_count=int(row["indexed_count"]),
                last_updated=from_epoch(row["last_updated"]),
            )
            for row in rows
        ]

    # Leases

    def acquire_lease(self, name: str, ttl_seconds: float, *, holder: Optional[str] = None) -> LeaseGrant:
        holder = holder or new_holder_token()
        now = self._now()
        now_ts = to_epoch(now)
        expires_at = now + timedelta(seconds=ttl_seconds)

        with self._transaction() as conn:
            row = conn.execute("SELECT holder, expires_at FROM leases WHERE name = ?", (name,)).fetchone()
            if row is not None and row["expires_at"] > now_ts and row["holder"] != holder:
                remaining = float(row["expires_at"]) - now_ts
                return LeaseGrant(
                    name=name,
                    granted=False,
                    remaining_ttl=remaining,
                    expires_at=from_epoch(row["expires_at"]),
                )
            conn.execute(
                """
                INSERT INTO leases (name, holder, acquired_at, expires_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    holder = excluded.holder,
                    acquired_at = excluded.acquired_at,
                    expires_at = excluded.expires_at
                """,
                (name, holder, now_ts, to_epoch(expires_at)),
            )
        if row is not None and row["holder"] != holder:
            logger.info("Reclaimed expired lease. name=%s previous_holder=%s", name, row["holder"])
        return LeaseGrant(name=name, granted=True, holder=holder, remaining_ttl=float(ttl_seconds), expires_at=expires_at)

    def renew_lease(self, name: str, holder: str, ttl_seconds: float) -> bool:
        now = self._now()
        expires_at = now + timedelta(seconds=ttl_seconds)
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE leases SET expires_at = ? WHERE name = ? AND holder = ? AND expires_at > ?",
                (to_epoch(expires_at), name, holder, to_epoch(now)),
            )
            return cursor.rowcount > 0

    def release_lease(self, name: str, holder: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM leases WHERE name = ? AND holder = ?", (name, holder))
            return cursor.rowcount > 0

    def reap_expired_leases(self) -> int:
        now_ts = to_epoch(self._now())
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM leases WHERE expires_at <= ?", (now_ts,))
            return cursor.rowcount

    def list_leases(self) -> list[Lease]:
        with self._reading() as conn:
            rows = conn.execute("SELECT * FROM leases ORDER BY name").fetchall()
        return [
            Lease(
                name=row["name"],
                holder=row["holder"],
                acquired_at=from_epoch(row["acquired_at"]),
                expires_at=from_epoch(row["expires_at"]),
            )
            for row in rows
        ]
