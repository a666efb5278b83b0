"""
Database module for local persistence using SQLite.

Holds two things:
- the API response cache, which doubles as the offline fallback;
- the document collections (profiles, settings, favorites) that stand in
  for the cloud document database.
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

import aiosqlite

from config.settings import DB_CONNECTION_STRING
from utils.constants import CACHE_EVICTION_FRACTION, DOCUMENT_FIELD_PATTERN
from utils.errors import ValidationError

logger = logging.getLogger("pokedex.database")

# Ordering on these uses the table columns rather than the JSON body
_TIMESTAMP_COLUMNS = ("created_at", "updated_at")


class Database:
    """
    Async database interface.
    Currently supports SQLite via aiosqlite.

    Schema:
    - **api_cache**: API responses with age-based expiry.
      Columns: cache_key (PK), data (JSON), created_at, last_accessed, access_count.
    - **documents**: Schemaless JSON documents grouped by collection path
      (e.g. 'users/abc/favorites').
      Columns: collection, doc_id (PK together), data (JSON), created_at, updated_at.

    WARNING:
        Automated use of the `VACUUM` command is strongly discouraged. It takes
        an EXCLUSIVE lock on the database file and stalls every other call for
        the duration.
    """

    def __init__(self, connection_string: str = DB_CONNECTION_STRING):
        """
        Initialize the database instance.

        Args:
            connection_string: The connection URI (e.g., 'sqlite:///data/pokedex.db'
                or 'sqlite:///:memory:').
        """
        self.connection_string = connection_string
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

        self.db_type, self.db_path = self._parse_connection_string(connection_string)

    def _parse_connection_string(self, conn_str: str) -> Tuple[str, str]:
        """
        Parse connection string to determine database type and path.

        Args:
            conn_str: Connection string in format 'scheme:///path'.

        Returns:
            Tuple containing (scheme, path).
        """
        # Handle simple sqlite paths manually to avoid os-specific parsing issues
        if conn_str.startswith("sqlite:///"):
            return "sqlite", conn_str[len("sqlite:///"):]

        parsed = urlparse(conn_str)
        return parsed.scheme, parsed.path

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def connect(self) -> None:
        """
        Open the connection and create tables.

        Raises:
            ValueError: If the database type is not supported (only 'sqlite').
        """
        if self.db_type != "sqlite":
            raise ValueError(
                f"Unsupported database type: {self.db_type}. Only 'sqlite' is currently supported."
            )

        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._create_tables()
        logger.info(f"Database connected ({self.db_type}): {self.db_path}")

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("Database connection closed")

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database is not connected; call connect() first")
        return self._conn

    async def _create_tables(self) -> None:
        """Create database tables and indexes if they don't exist."""
        conn = self._connection()
        async with self._lock:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS api_cache (
                    cache_key TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    last_accessed REAL NOT NULL,
                    access_count INTEGER DEFAULT 1
                )
            """
            )

            await conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_cache_created
                ON api_cache(created_at)
            """
            )

            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    PRIMARY KEY (collection, doc_id)
                )
            """
            )

            await conn.commit()
            logger.debug("Database tables initialized")

    # ==================== API CACHE ====================

    async def get_cache(self, cache_key: str, max_age: float) -> Optional[Any]:
        """
        Retrieve cached data if it hasn't expired.

        Updates `last_accessed` and `access_count` on a hit and deletes the
        row if it is found but expired.

        Args:
            cache_key: The unique cache identifier.
            max_age: Maximum allowed age of the entry in seconds.

        Returns:
            The cached data (deserialized from JSON) or None if missing/expired.
        """
        conn = self._connection()
        async with self._lock:
            current_time = time.time()

            cursor = await conn.execute(
                "SELECT data, created_at FROM api_cache WHERE cache_key = ?",
                (cache_key,),
            )
            row = await cursor.fetchone()

            if row is None:
                return None

            if current_time - row["created_at"] >= max_age:
                await conn.execute(
                    "DELETE FROM api_cache WHERE cache_key = ?", (cache_key,)
                )
                await conn.commit()
                logger.debug(f"Cache expired: {cache_key[:50]}...")
                return None

            await conn.execute(
                """
                UPDATE api_cache
                SET last_accessed = ?, access_count = access_count + 1
                WHERE cache_key = ?
                """,
                (current_time, cache_key),
            )
            await conn.commit()

            logger.debug(f"Cache hit: {cache_key[:50]}...")
            return json.loads(row["data"])

    async def set_cache(self, cache_key: str, data: Any, max_size: int) -> None:
        """
        Store data in the cache, evicting the oldest rows when full.

        When the table holds `max_size` rows, roughly a tenth of them are
        removed, oldest `created_at` first, before the insert.

        Args:
            cache_key: The unique cache identifier.
            data: Data to cache (must be JSON serializable).
            max_size: Maximum number of rows allowed in the table.
        """
        conn = self._connection()
        data_json = json.dumps(data)

        async with self._lock:
            current_time = time.time()

            cursor = await conn.execute(
                "SELECT COUNT(*) AS count FROM api_cache WHERE cache_key != ?",
                (cache_key,),
            )
            row = await cursor.fetchone()

            if row["count"] >= max_size:
                remove_count = max(1, max_size // CACHE_EVICTION_FRACTION)
                await conn.execute(
                    """
                    DELETE FROM api_cache WHERE cache_key IN (
                        SELECT cache_key FROM api_cache
                        WHERE cache_key != ?
                        ORDER BY created_at ASC, rowid ASC
                        LIMIT ?
                    )
                    """,
                    (cache_key, remove_count),
                )
                logger.debug(f"Evicted {remove_count} old cache entries")

            await conn.execute(
                """
                INSERT INTO api_cache (cache_key, data, created_at, last_accessed)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(cache_key) DO UPDATE SET
                    data = excluded.data,
                    created_at = excluded.created_at,
                    last_accessed = excluded.last_accessed
                """,
                (cache_key, data_json, current_time, current_time),
            )
            await conn.commit()

            logger.debug(f"Cached: {cache_key[:50]}...")

    async def clear_cache(self) -> None:
        """Delete every cached API response."""
        conn = self._connection()
        async with self._lock:
            await conn.execute("DELETE FROM api_cache")
            await conn.commit()
            logger.info("Cache cleared")

    async def get_cache_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the cache usage.

        Returns:
            Dictionary containing 'size' (count), 'total_accesses', and 'avg_accesses'.
        """
        conn = self._connection()
        async with self._lock:
            cursor = await conn.execute(
                """
                SELECT
                    COUNT(*) AS size,
                    SUM(access_count) AS total_accesses,
                    AVG(access_count) AS avg_accesses
                FROM api_cache
            """
            )
            row = await cursor.fetchone()

            return {
                "size": row["size"],
                "total_accesses": row["total_accesses"] or 0,
                "avg_accesses": round(row["avg_accesses"] or 0, 1),
            }

    async def cleanup_expired_cache(self, max_age: float) -> int:
        """
        Remove expired cache entries based on creation time.

        Args:
            max_age: Maximum allowed age in seconds.

        Returns:
            Number of entries removed.
        """
        conn = self._connection()
        async with self._lock:
            cutoff_time = time.time() - max_age

            cursor = await conn.execute(
                "DELETE FROM api_cache WHERE created_at < ?",
                (cutoff_time,),
            )
            deleted_count = cursor.rowcount
            await conn.commit()

            if deleted_count > 0:
                logger.debug(f"Cleaned {deleted_count} expired cache entries")

            return deleted_count

    # ==================== DOCUMENTS ====================

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch one document.

        Returns:
            The document body, or None if it does not exist.
        """
        conn = self._connection()
        async with self._lock:
            cursor = await conn.execute(
                "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id),
            )
            row = await cursor.fetchone()

        return json.loads(row["data"]) if row else None

    async def set_document(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        merge: bool = False,
    ) -> Dict[str, Any]:
        """
        Create or replace a document.

        Args:
            collection: Collection path.
            doc_id: Document id within the collection.
            data: JSON-serializable body.
            merge: Shallow-merge top-level keys into an existing body instead
                of replacing it.

        Returns:
            The body as stored.
        """
        conn = self._connection()
        async with self._lock:
            body = dict(data)
            if merge:
                cursor = await conn.execute(
                    "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
                    (collection, doc_id),
                )
                row = await cursor.fetchone()
                if row:
                    body = {**json.loads(row["data"]), **body}

            current_time = time.time()
            await conn.execute(
                """
                INSERT INTO documents (collection, doc_id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(collection, doc_id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (collection, doc_id, json.dumps(body), current_time, current_time),
            )
            await conn.commit()

        logger.debug(
            "Document written",
            extra={"collection": collection, "doc_id": doc_id, "merge": merge},
        )
        return body

    async def delete_document(self, collection: str, doc_id: str) -> bool:
        """
        Delete a document.

        Returns:
            True if a document was removed, False if none existed.
        """
        conn = self._connection()
        async with self._lock:
            cursor = await conn.execute(
                "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id),
            )
            deleted = cursor.rowcount > 0
            await conn.commit()

        logger.debug(
            "Document deleted",
            extra={"collection": collection, "doc_id": doc_id, "deleted": deleted},
        )
        return deleted

    async def query_documents(
        self,
        collection: str,
        where: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Query a collection by field equality with optional ordering.

        Args:
            collection: Collection path.
            where: Field -> value equality filters on the JSON body
                (dotted paths allowed, e.g. 'settings.theme').
            order_by: A JSON body field, or 'created_at' / 'updated_at' to
                order by write time. Ties break on insertion order.
            descending: Reverse the ordering.
            limit: Maximum number of documents to return.

        Returns:
            Matching document bodies.

        Raises:
            ValidationError: If a field name is not a plain (dotted) identifier.
        """
        clauses = ["collection = ?"]
        params: List[Any] = [collection]

        for field, value in (where or {}).items():
            self._check_field(field)
            clauses.append("json_extract(data, ?) = ?")
            params.extend([f"$.{field}", self._sql_value(value)])

        direction = "DESC" if descending else "ASC"
        if order_by is None:
            order_sql = f"rowid {direction}"
        elif order_by in _TIMESTAMP_COLUMNS:
            order_sql = f"{order_by} {direction}, rowid {direction}"
        else:
            self._check_field(order_by)
            order_sql = f"json_extract(data, ?) {direction}, rowid {direction}"
            params.append(f"$.{order_by}")

        sql = f"SELECT data FROM documents WHERE {' AND '.join(clauses)} ORDER BY {order_sql}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        conn = self._connection()
        async with self._lock:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()

        return [json.loads(row["data"]) for row in rows]

    async def count_documents(self, collection: str) -> int:
        conn = self._connection()
        async with self._lock:
            cursor = await conn.execute(
                "SELECT COUNT(*) AS count FROM documents WHERE collection = ?",
                (collection,),
            )
            row = await cursor.fetchone()
        return row["count"]

    @staticmethod
    def _check_field(field: str) -> None:
        if not DOCUMENT_FIELD_PATTERN.match(field):
            raise ValidationError(f"Invalid document field name: {field!r}")

    @staticmethod
    def _sql_value(value: Any) -> Any:
        # json_extract returns 1/0 for JSON booleans
        if isinstance(value, bool):
            return int(value)
        return value


async def create_database(connection_string: str = DB_CONNECTION_STRING) -> Database:
    """
    Build and connect a Database.

    Args:
        connection_string: Connection URI.

    Returns:
        The connected Database instance.
    """
    database = Database(connection_string)
    await database.connect()
    return database
