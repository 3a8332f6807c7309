"""
Append-only score history storage.
"""

from psycopg.types.json import Jsonb

from app.db.helpers import fetch_all, fetch_one
from app.features.pipeline_scoring.domain import ScoreHistoryEntry

from .base import storage_operation, to_float


class PostgresScoreHistoryRepository:
    HISTORY_SELECT_COLUMNS = """
        id, recommendation_id, score, stage, trigger_source, breakdown,
        weighted_monthly, weighted_onetime, scored_at
    """

    @classmethod
    def _row_to_entry(cls, row: dict) -> ScoreHistoryEntry:
        breakdown = row.get("breakdown") or {}
        return ScoreHistoryEntry(
            id=str(row["id"]),
            deal_id=str(row["recommendation_id"]),
            score=row["score"],
            stage=row["stage"],
            scored_at=row["scored_at"],
            reason=row["trigger_source"],
            breakdown={name: float(value) for name, value in breakdown.items()},
            weighted_monthly=to_float(row.get("weighted_monthly")),
            weighted_onetime=to_float(row.get("weighted_onetime")),
        )

    @classmethod
    @storage_operation("append_score_history")
    async def append(cls, entry: ScoreHistoryEntry) -> ScoreHistoryEntry:
        query = f"""
            INSERT INTO pipeline_score_history (
                recommendation_id, score, stage, trigger_source, breakdown,
                weighted_monthly, weighted_onetime, scored_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {cls.HISTORY_SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                entry.deal_id,
                entry.score,
                entry.stage,
                entry.reason,
                Jsonb(entry.breakdown),
                entry.weighted_monthly,
                entry.weighted_onetime,
                entry.scored_at,
            ),
        )
        return cls._row_to_entry(row)

    @classmethod
    @storage_operation("latest_score")
    async def latest(cls, deal_id: str) -> ScoreHistoryEntry | None:
        query = f"""
            SELECT {cls.HISTORY_SELECT_COLUMNS}
            FROM pipeline_score_history
            WHERE recommendation_id = %s
            ORDER BY scored_at DESC
            LIMIT 1
        """
        row = await fetch_one(query, (deal_id,))
        return cls._row_to_entry(row) if row else None

    @classmethod
    @storage_operation("list_score_history")
    async def list_for_deal(cls, deal_id: str, limit: int = 50) -> list[ScoreHistoryEntry]:
        query = f"""
            SELECT {cls.HISTORY_SELECT_COLUMNS}
            FROM pipeline_score_history
            WHERE recommendation_id = %s
            ORDER BY scored_at DESC
            LIMIT %s
        """
        rows = await fetch_all(query, (deal_id, limit))
        return [cls._row_to_entry(row) for row in rows]
