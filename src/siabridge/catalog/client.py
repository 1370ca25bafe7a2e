"""SQLite metadata catalog for buckets and objects.

The catalog is the only owner of bucket and object records. Every mutation
runs in its own ``BEGIN IMMEDIATE`` transaction, which makes it atomic per
(bucket, name) key across threads and across processes sharing the file.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, List, Optional, Sequence

from siabridge.catalog.models import BucketInfo, ObjectInfo
from siabridge.catalog.schema import (
    ALL_SCHEMA_STATEMENTS,
    NEVER_FETCHED,
    NOT_UPLOADED,
    OBJECT_COLUMNS,
)
from siabridge.errors import (
    BucketNotFoundError,
    ConflictError,
    ObjectNotFoundError,
    PersistenceError,
)
from siabridge.utils import now_ts

logger = logging.getLogger(__name__)


class MetadataCatalog:
    """Catalog of bucket and object records backed by SQLite.

    Each instance owns its own connection; several catalogs (and bridges)
    can coexist in one process.

    Attributes:
        db_path: Path to the SQLite database file
        busy_timeout: Seconds to wait on a database locked by another process
    """

    def __init__(self, db_path: Path, busy_timeout: float = 30.0):
        """Initialize the catalog.

        Args:
            db_path: Path to the SQLite database file
            busy_timeout: Seconds to wait when the database is locked
        """
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        """Get or create the database connection.

        Raises:
            PersistenceError: If the database cannot be opened
        """
        with self._lock:
            if self._connection is None:
                try:
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                    conn = sqlite3.connect(
                        self.db_path,
                        timeout=self.busy_timeout,
                        isolation_level=None,
                        check_same_thread=False,
                    )
                    conn.row_factory = sqlite3.Row
                    conn.execute("PRAGMA foreign_keys = ON")
                except (sqlite3.Error, OSError) as e:
                    raise PersistenceError(
                        f"Cannot open catalog database {self.db_path}: {e}"
                    ) from e
                self._connection = conn
            return self._connection

    @property
    def is_open(self) -> bool:
        """True while a connection is held."""
        return self._connection is not None

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None

    def __enter__(self) -> "MetadataCatalog":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for a write transaction.

        Yields:
            SQLite connection with an active immediate transaction

        Raises:
            PersistenceError: If sqlite reports an error (chained as __cause__)
        """
        with self._lock:
            conn = self.connection
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise PersistenceError(f"Catalog transaction failed: {e}") from e
            except BaseException:
                self._rollback(conn)
                raise

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.rollback()

    def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self.connection.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(f"Catalog query failed: {e}") from e

    def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            try:
                return self.connection.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                raise PersistenceError(f"Catalog query failed: {e}") from e

    def initialize_schema(self) -> None:
        """Create the buckets and objects tables if they don't exist."""
        with self.transaction() as conn:
            for statement in ALL_SCHEMA_STATEMENTS:
                conn.execute(statement)
        logger.debug(f"Catalog schema ready at {self.db_path}")

    # =========================================================================
    # Buckets
    # =========================================================================

    def create_bucket(self, name: str, created: Optional[int] = None) -> bool:
        """Create a bucket if it does not already exist.

        Args:
            name: Bucket name
            created: Creation time in Unix seconds (defaults to now)

        Returns:
            True if the bucket was created, False if it already existed
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO buckets (name, created) VALUES (?, ?)",
                (name, created if created is not None else now_ts()),
            )
            return cursor.rowcount == 1

    def bucket_exists(self, name: str) -> bool:
        """Check whether a bucket exists."""
        row = self._fetchone("SELECT 1 FROM buckets WHERE name = ?", (name,))
        return row is not None

    def get_bucket(self, name: str) -> BucketInfo:
        """Get a bucket record.

        Raises:
            BucketNotFoundError: If the bucket does not exist
        """
        row = self._fetchone("SELECT name, created FROM buckets WHERE name = ?", (name,))
        if row is None:
            raise BucketNotFoundError(f"Bucket does not exist: {name}")
        return BucketInfo.from_row(row)

    def list_buckets(self) -> List[BucketInfo]:
        """List all buckets ordered by name."""
        rows = self._fetchall("SELECT name, created FROM buckets ORDER BY name")
        return [BucketInfo.from_row(row) for row in rows]

    def delete_bucket(self, name: str) -> List[ObjectInfo]:
        """Delete a bucket and every object record in it.

        Args:
            name: Bucket name

        Returns:
            The object records that were deleted with the bucket

        Raises:
            BucketNotFoundError: If the bucket does not exist
        """
        with self.transaction() as conn:
            rows = conn.execute(
                f"SELECT {OBJECT_COLUMNS} FROM objects WHERE bucket = ? ORDER BY name",
                (name,),
            ).fetchall()
            conn.execute("DELETE FROM objects WHERE bucket = ?", (name,))
            cursor = conn.execute("DELETE FROM buckets WHERE name = ?", (name,))
            if cursor.rowcount == 0:
                raise BucketNotFoundError(f"Bucket does not exist: {name}")
        return [ObjectInfo.from_row(row) for row in rows]

    # =========================================================================
    # Objects
    # =========================================================================

    def insert_object(
        self,
        bucket: str,
        name: str,
        size: int,
        queued_at: Optional[int] = None,
        purge_after: int = 0,
    ) -> ObjectInfo:
        """Insert a queued object record if no record exists for the key.

        Existence check and insert happen in one transaction, so at most
        one of several concurrent inserts for the same key succeeds.

        Args:
            bucket: Bucket name
            name: Object name
            size: Size in bytes
            queued_at: Queue time in Unix seconds (defaults to now)
            purge_after: Cache purge window in seconds (0 = never purge)

        Returns:
            The inserted record

        Raises:
            BucketNotFoundError: If the bucket does not exist
            ConflictError: If the object already exists
        """
        queued_at = queued_at if queued_at is not None else now_ts()
        with self.transaction() as conn:
            if conn.execute("SELECT 1 FROM buckets WHERE name = ?", (bucket,)).fetchone() is None:
                raise BucketNotFoundError(f"Bucket does not exist: {bucket}")
            cursor = conn.execute(
                """
                INSERT INTO objects (bucket, name, size, queued, uploaded, purge_after,
                                     cached_fetches, sia_fetches, last_fetch)
                VALUES (?, ?, ?, ?, ?, ?, 0, 0, ?)
                ON CONFLICT (bucket, name) DO NOTHING
                """,
                (bucket, name, size, queued_at, NOT_UPLOADED, purge_after, NEVER_FETCHED),
            )
            if cursor.rowcount == 0:
                raise ConflictError(
                    f"Object with same name already exists in bucket: {bucket}/{name}"
                )
            row = conn.execute(
                f"SELECT {OBJECT_COLUMNS} FROM objects WHERE bucket = ? AND name = ?",
                (bucket, name),
            ).fetchone()
        return ObjectInfo.from_row(row)

    def object_exists(self, bucket: str, name: str) -> bool:
        """Check whether an object record exists."""
        row = self._fetchone(
            "SELECT 1 FROM objects WHERE bucket = ? AND name = ?", (bucket, name)
        )
        return row is not None

    def find_path_conflict(self, bucket: str, name: str) -> Optional[str]:
        """Find an object whose name nests with ``name`` as a path.

        Object names map onto cache paths, so ``a`` and ``a/b`` cannot both
        exist in one bucket.

        Returns:
            Name of a conflicting object, or None
        """
        parts = name.split("/")
        prefixes = ["/".join(parts[:i]) for i in range(1, len(parts))]
        placeholders = ", ".join("?" for _ in prefixes) or "NULL"
        row = self._fetchone(
            f"""
            SELECT name FROM objects
            WHERE bucket = ?
              AND (name IN ({placeholders}) OR substr(name, 1, ?) = ?)
            LIMIT 1
            """,
            (bucket, *prefixes, len(name) + 1, name + "/"),
        )
        return row["name"] if row is not None else None

    def get_object(self, bucket: str, name: str) -> ObjectInfo:
        """Get an object record.

        Raises:
            ObjectNotFoundError: If the object does not exist
        """
        row = self._fetchone(
            f"SELECT {OBJECT_COLUMNS} FROM objects WHERE bucket = ? AND name = ?",
            (bucket, name),
        )
        if row is None:
            raise ObjectNotFoundError(f"Object does not exist in bucket: {bucket}/{name}")
        return ObjectInfo.from_row(row)

    def list_objects(self, bucket: str) -> List[ObjectInfo]:
        """List the objects in a bucket (empty if the bucket does not exist)."""
        rows = self._fetchall(
            f"SELECT {OBJECT_COLUMNS} FROM objects WHERE bucket = ? ORDER BY name",
            (bucket,),
        )
        return [ObjectInfo.from_row(row) for row in rows]

    def delete_object(self, bucket: str, name: str) -> None:
        """Delete an object record.

        Raises:
            ObjectNotFoundError: If the object does not exist
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM objects WHERE bucket = ? AND name = ?", (bucket, name)
            )
            if cursor.rowcount == 0:
                raise ObjectNotFoundError(
                    f"Object does not exist in bucket: {bucket}/{name}"
                )

    def mark_uploaded(self, bucket: str, name: str, at: Optional[int] = None) -> bool:
        """Record that the remote network confirmed an object durable.

        Only a queued object is updated; the upload time of a durable object
        never changes.

        Args:
            bucket: Bucket name
            name: Object name
            at: Confirmation time in Unix seconds (defaults to now)

        Returns:
            True if the object moved from queued to durable
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE objects SET uploaded = ? WHERE bucket = ? AND name = ? AND uploaded = ?",
                (at if at is not None else now_ts(), bucket, name, NOT_UPLOADED),
            )
            return cursor.rowcount == 1

    def increment_cached_fetch(self, bucket: str, name: str, at: Optional[int] = None) -> bool:
        """Count a fetch served from the local cache.

        Returns:
            False if the object record no longer exists
        """
        return self._increment_fetch("cached_fetches", bucket, name, at)

    def increment_remote_fetch(self, bucket: str, name: str, at: Optional[int] = None) -> bool:
        """Count a fetch served from the remote network.

        Returns:
            False if the object record no longer exists
        """
        return self._increment_fetch("sia_fetches", bucket, name, at)

    def _increment_fetch(self, column: str, bucket: str, name: str, at: Optional[int]) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE objects SET {column} = {column} + 1, last_fetch = ? "
                "WHERE bucket = ? AND name = ?",
                (at if at is not None else now_ts(), bucket, name),
            )
            return cursor.rowcount == 1

    def list_pending_uploads(self) -> List[ObjectInfo]:
        """List every object whose upload has not been confirmed durable."""
        rows = self._fetchall(
            f"SELECT {OBJECT_COLUMNS} FROM objects WHERE uploaded = ? ORDER BY bucket, name",
            (NOT_UPLOADED,),
        )
        return [ObjectInfo.from_row(row) for row in rows]
