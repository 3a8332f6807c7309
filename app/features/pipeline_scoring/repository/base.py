"""
Shared plumbing for the Postgres repositories.
"""

import functools

import psycopg

from app.db.helpers import DatabaseError
from app.features.pipeline_scoring.domain import TransientStorageError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def storage_operation(operation: str):
    """
    Decorator translating driver failures into TransientStorageError.

    No retry happens here; the next scheduled run picks the item up again.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except DatabaseError as e:
                raise TransientStorageError(
                    str(e), operation=operation, recoverable=e.recoverable
                ) from e
            except psycopg.Error as e:
                logger.error("Storage operation failed", operation=operation, error=str(e))
                raise TransientStorageError(
                    f"{operation} failed: {e}",
                    operation=operation,
                    recoverable=isinstance(e, psycopg.OperationalError),
                ) from e

        return wrapper

    return decorator


def to_float(value) -> float:
    """NUMERIC columns come back as Decimal (or None)."""
    return float(value) if value is not None else 0.0
