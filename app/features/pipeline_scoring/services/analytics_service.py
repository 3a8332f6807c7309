"""
Archive analytics: why deals were lost and what they were worth.

Read-only. Percentages are rounded per reason and deliberately not
normalised, so they may sum to 99 or 101.
"""

from __future__ import annotations

import math
from typing import Any

from app.features.pipeline_scoring.domain import (
    ArchiveAnalytics,
    ArchiveAnalyticsFilters,
    ReasonBreakdown,
    ValidationError,
)
from app.features.pipeline_scoring.repository import DealRepository, PostgresDealRepository
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def _num(value: Any) -> float:
    return float(value) if value is not None else 0.0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _money(value: Any) -> float:
    return math.floor(_num(value) * 100 + 0.5) / 100


class ArchiveAnalyticsService:
    def __init__(self, deals: DealRepository | None = None):
        self.deals = deals or PostgresDealRepository()

    async def get_archive_analytics(
        self, filters: ArchiveAnalyticsFilters | None = None
    ) -> ArchiveAnalytics:
        filters = filters or ArchiveAnalyticsFilters()
        if (
            filters.archived_after
            and filters.archived_before
            and filters.archived_after > filters.archived_before
        ):
            raise ValidationError(
                "archived_after must not be later than archived_before",
                operation="archive_analytics",
            )

        summary = await self.deals.archive_summary(filters)
        reason_rows = await self.deals.archive_reasons(filters)

        total = int(_num(summary.get("total_archived")))
        breakdown = [
            ReasonBreakdown(
                reason=row["reason"],
                count=int(_num(row.get("count"))),
                monthly_lost=_money(row.get("monthly_lost")),
                onetime_lost=_money(row.get("onetime_lost")),
                percentage=_round_half_up(_num(row.get("count")) / total * 100) if total else 0,
            )
            for row in reason_rows
        ]
        breakdown.sort(key=lambda item: (-item.count, item.reason))
        top = breakdown[0] if breakdown else None

        analytics = ArchiveAnalytics(
            total_archived=total,
            lost_monthly=_money(summary.get("lost_monthly")),
            lost_onetime=_money(summary.get("lost_onetime")),
            avg_days_to_archive=_round_half_up(_num(summary.get("avg_days_to_archive"))),
            top_reason=top.reason if top else None,
            top_reason_percentage=top.percentage if top else 0,
            reasons_breakdown=breakdown,
        )

        logger.info(
            "Archive analytics computed",
            total_archived=analytics.total_archived,
            top_reason=analytics.top_reason,
            owner_id=filters.owner_id,
        )
        return analytics


archive_analytics_service = ArchiveAnalyticsService()
