"""
Audit log of batch steps (pipeline_scoring_runs).
"""

from psycopg.types.json import Jsonb

from app.config import settings
from app.db.helpers import execute_query
from app.features.pipeline_scoring.domain import BatchStepResult

from .base import storage_operation


class PostgresScoringRunRepository:
    @classmethod
    @storage_operation("record_scoring_run")
    async def record(cls, run_type: str, result: BatchStepResult) -> None:
        errors = [error.to_dict() for error in result.errors[: settings.PIPELINE_RUN_ERROR_LIMIT]]
        query = """
            INSERT INTO pipeline_scoring_runs (
                run_type, processed, succeeded, failed, skipped, duration_ms, errors
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
        """
        await execute_query(
            query,
            (
                run_type,
                result.processed,
                result.succeeded,
                result.failed,
                result.skipped,
                result.duration_ms,
                Jsonb(errors),
            ),
        )
