"""
Postgres storage for deals (the recommendations table).
"""

from datetime import datetime, timedelta
from typing import Any

from app.db.helpers import execute_query, fetch_all, fetch_one
from app.features.pipeline_scoring.domain import (
    ACTIVE_STATUSES,
    ActiveDealFilters,
    ArchiveAnalyticsFilters,
    Deal,
)
from app.infrastructure.observability.logging import get_logger

from .base import storage_operation, to_float

logger = get_logger(__name__)


class PostgresDealRepository:
    """Reads deal state and writes the current-score columns."""

    DEAL_SELECT_COLUMNS = """
        id, status, created_by, created_at, sent_at, archived_at, archive_reason,
        pipeline_score, pipeline_stage, last_scored_at,
        predicted_monthly, predicted_onetime, predicted_tier,
        weighted_monthly, weighted_onetime,
        snoozed_until, revived_at
    """

    @classmethod
    def _row_to_deal(cls, row: dict | None) -> Deal | None:
        if not row:
            return None

        return Deal(
            id=str(row["id"]),
            status=row["status"],
            owner_id=str(row["created_by"]) if row.get("created_by") else None,
            created_at=row["created_at"],
            sent_at=row.get("sent_at"),
            archived_at=row.get("archived_at"),
            archive_reason=row.get("archive_reason"),
            current_score=row.get("pipeline_score"),
            stage=row.get("pipeline_stage"),
            last_scored_at=row.get("last_scored_at"),
            predicted_monthly=to_float(row.get("predicted_monthly")),
            predicted_onetime=to_float(row.get("predicted_onetime")),
            predicted_tier=row.get("predicted_tier"),
            weighted_monthly=to_float(row.get("weighted_monthly")),
            weighted_onetime=to_float(row.get("weighted_onetime")),
            snoozed_until=row.get("snoozed_until"),
            revived_at=row.get("revived_at"),
        )

    @classmethod
    @storage_operation("get_deal")
    async def get(cls, deal_id: str) -> Deal | None:
        query = f"SELECT {cls.DEAL_SELECT_COLUMNS} FROM recommendations WHERE id = %s"
        return cls._row_to_deal(await fetch_one(query, (deal_id,)))

    @classmethod
    @storage_operation("update_deal_score")
    async def update_score(
        cls,
        deal_id: str,
        score: int,
        stage: str,
        scored_at: datetime,
        weighted_monthly: float,
        weighted_onetime: float,
    ) -> None:
        # Only move forward: a slower concurrent pass must not overwrite a newer score
        query = """
            UPDATE recommendations
            SET pipeline_score = %s,
                pipeline_stage = %s,
                weighted_monthly = %s,
                weighted_onetime = %s,
                last_scored_at = %s
            WHERE id = %s
              AND (last_scored_at IS NULL OR last_scored_at <= %s)
        """
        updated = await execute_query(
            query,
            (score, stage, weighted_monthly, weighted_onetime, scored_at, deal_id, scored_at),
        )
        if not updated:
            logger.debug("Deal score not updated (newer score present)", deal_id=deal_id)

    @classmethod
    @storage_operation("list_stale_deals")
    async def list_stale(
        cls, threshold_hours: float, now: datetime, limit: int | None = None
    ) -> list[Deal]:
        cutoff = now - timedelta(hours=threshold_hours)
        query = f"""
            SELECT {cls.DEAL_SELECT_COLUMNS}
            FROM recommendations
            WHERE status = ANY(%s)
              AND archived_at IS NULL
              AND (last_scored_at IS NULL OR last_scored_at < %s)
            ORDER BY last_scored_at ASC NULLS FIRST
        """
        params: tuple = (sorted(ACTIVE_STATUSES), cutoff)
        if limit is not None:
            query += " LIMIT %s"
            params += (limit,)

        rows = await fetch_all(query, params)
        return [cls._row_to_deal(row) for row in rows]

    @classmethod
    @storage_operation("list_active_deals")
    async def list_active(cls, filters: ActiveDealFilters | None = None) -> list[Deal]:
        filters = filters or ActiveDealFilters()
        clauses = ["status = ANY(%s)"]
        params: list[Any] = [sorted(ACTIVE_STATUSES)]

        if not filters.include_archived:
            clauses.append("archived_at IS NULL")
        if filters.owner_id:
            clauses.append("created_by = %s")
            params.append(filters.owner_id)
        if filters.predicted_tier:
            clauses.append("predicted_tier = %s")
            params.append(filters.predicted_tier)
        if filters.sent_after:
            clauses.append("sent_at >= %s")
            params.append(filters.sent_after)
        if filters.sent_before:
            clauses.append("sent_at < %s")
            params.append(filters.sent_before)

        query = f"""
            SELECT {cls.DEAL_SELECT_COLUMNS}
            FROM recommendations
            WHERE {" AND ".join(clauses)}
            ORDER BY last_scored_at ASC NULLS FIRST
        """
        rows = await fetch_all(query, tuple(params))
        return [cls._row_to_deal(row) for row in rows]

    @classmethod
    @storage_operation("list_revenue_deals")
    async def list_revenue_deals(cls, owner_id: str | None = None) -> list[Deal]:
        """Sent, unarchived deals, highest score first (unscored last)."""
        clauses = ["status = 'sent'", "archived_at IS NULL"]
        params: list[Any] = []
        if owner_id:
            clauses.append("created_by = %s")
            params.append(owner_id)

        query = f"""
            SELECT {cls.DEAL_SELECT_COLUMNS}
            FROM recommendations
            WHERE {" AND ".join(clauses)}
            ORDER BY pipeline_score DESC NULLS LAST, id ASC
        """
        rows = await fetch_all(query, tuple(params))
        return [cls._row_to_deal(row) for row in rows]

    @staticmethod
    def _archive_where(filters: ArchiveAnalyticsFilters) -> tuple[str, tuple]:
        clauses = ["status = 'archived'", "archived_at IS NOT NULL"]
        params: list[Any] = []
        if filters.archived_after:
            clauses.append("archived_at >= %s")
            params.append(filters.archived_after)
        if filters.archived_before:
            clauses.append("archived_at <= %s")
            params.append(filters.archived_before)
        if filters.owner_id:
            clauses.append("created_by = %s")
            params.append(filters.owner_id)
        return " AND ".join(clauses), tuple(params)

    @classmethod
    @storage_operation("archive_summary")
    async def archive_summary(cls, filters: ArchiveAnalyticsFilters) -> dict[str, Any]:
        where, params = cls._archive_where(filters)
        # SUM/AVG are NULL when nothing matches; the service coerces them
        query = f"""
            SELECT
                COUNT(*) AS total_archived,
                SUM(predicted_monthly) AS lost_monthly,
                SUM(predicted_onetime) AS lost_onetime,
                AVG(EXTRACT(EPOCH FROM (archived_at - COALESCE(sent_at, created_at))) / 86400)
                    AS avg_days_to_archive
            FROM recommendations
            WHERE {where}
        """
        return await fetch_one(query, params) or {}

    @classmethod
    @storage_operation("archive_reasons")
    async def archive_reasons(cls, filters: ArchiveAnalyticsFilters) -> list[dict[str, Any]]:
        where, params = cls._archive_where(filters)
        query = f"""
            SELECT
                COALESCE(archive_reason, 'other') AS reason,
                COUNT(*) AS count,
                SUM(predicted_monthly) AS monthly_lost,
                SUM(predicted_onetime) AS onetime_lost
            FROM recommendations
            WHERE {where}
            GROUP BY COALESCE(archive_reason, 'other')
            ORDER BY count DESC, reason ASC
        """
        return await fetch_all(query, params)
