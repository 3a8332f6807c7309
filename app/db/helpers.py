"""
Database helper functions for common query patterns.
Repositories call these instead of managing cursors themselves.
"""

from typing import Any

import psycopg

from app.db.pool import get_db_connection
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Raised when a query fails at the driver level."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


def _wrap(e: psycopg.Error, operation: str, query: str) -> DatabaseError:
    logger.error(f"Database {operation} error", query=query[:100], error=str(e))
    # Connection/timeout problems are worth retrying on the next run; bad data is not
    recoverable = isinstance(e, psycopg.OperationalError)
    return DatabaseError(f"Query failed: {e}", operation=operation, recoverable=recoverable)


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Execute query and return the first row as a dict, or None.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection (e.g. inside a transaction)
    """
    try:
        if connection:
            async with connection.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchone()
        async with get_db_connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchone()
    except psycopg.Error as e:
        raise _wrap(e, "fetch_one", query) from e


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    """Execute query and return every row as a list of dicts."""
    try:
        if connection:
            async with connection.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()
        async with get_db_connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()
    except psycopg.Error as e:
        raise _wrap(e, "fetch_all", query) from e


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """Execute a statement and return the number of affected rows."""
    try:
        if connection:
            cursor = await connection.execute(query, params)
            return cursor.rowcount
        async with get_db_connection() as conn:
            cursor = await conn.execute(query, params)
            return cursor.rowcount
    except psycopg.Error as e:
        raise _wrap(e, "execute", query) from e

