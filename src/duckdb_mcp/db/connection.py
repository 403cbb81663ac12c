"""DuckDB connection management."""

import asyncio
import logging
import threading
from pathlib import Path
from typing import Any

import duckdb

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"


class DatabaseError(Exception):
    """Database connection or query error."""

    pass


class DuckDBManager:
    """Owns the single DuckDB connection used by the server.

    All statements go through :meth:`query`, which holds an asyncio lock for
    the duration of the call so that no two statements run against the
    connection at the same time. The blocking DuckDB call itself runs in a
    worker thread.
    """

    def __init__(self) -> None:
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._path: str | None = None
        self._lock = asyncio.Lock()
        # Held by the worker thread for the whole statement; a cancelled caller
        # releases _lock but its statement still runs to completion
        self._conn_lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def path(self) -> str | None:
        return self._path

    async def initialize(self, db_path: str = MEMORY_PATH) -> None:
        """Open the database.

        Args:
            db_path: ':memory:' for an ephemeral database, otherwise a file path.
                Parent directories of a file path are created.

        Raises:
            DatabaseError: If the database cannot be opened
        """
        if self._conn is not None:
            raise DatabaseError(f"Database already initialized ({self._path})")

        logger.info(f"Initializing DuckDB with path: {db_path}")
        if db_path != MEMORY_PATH:
            Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = await asyncio.to_thread(duckdb.connect, db_path)
        except duckdb.Error as exc:
            raise DatabaseError(f"Failed to open database {db_path}: {exc}") from exc
        self._path = db_path

    async def query(self, sql: str, max_rows: int | None = None) -> list[dict[str, Any]]:
        """Execute a statement and return its rows as dicts.

        Args:
            sql: Statement to execute (passed through unchanged)
            max_rows: Fetch at most this many rows from the result

        Returns:
            Rows as column-name -> value mappings; empty for statements
            without a result set

        Raises:
            DatabaseError: If the database is not initialized or execution fails
        """
        async with self._lock:
            if self._conn is None:
                raise DatabaseError("Database not initialized")
            logger.info(f"SQL query: {sql}")
            return await asyncio.to_thread(self._execute, self._conn, sql, max_rows)

    def _execute(
        self, conn: duckdb.DuckDBPyConnection, sql: str, max_rows: int | None
    ) -> list[dict[str, Any]]:
        try:
            with self._conn_lock:
                result = conn.execute(sql)
                if result.description is None:
                    return []
                columns = [desc[0] for desc in result.description]
                rows = result.fetchmany(max_rows) if max_rows is not None else result.fetchall()
        except duckdb.Error as exc:
            logger.error(f"Query error: {exc}")
            raise DatabaseError(str(exc)) from exc
        return [dict(zip(columns, row)) for row in rows]

    async def close(self) -> None:
        """Close the database. Safe to call when already closed.

        The close itself is synchronous so that it still completes when the
        surrounding task is being cancelled during shutdown. It waits for a
        statement abandoned by a cancelled caller to finish first.
        """
        async with self._lock:
            if self._conn is None:
                return
            with self._conn_lock:
                self._conn.close()
            self._conn = None
            logger.info(f"DuckDB closed ({self._path})")
            self._path = None
