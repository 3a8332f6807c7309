"""
Stale-score sweeper.

Recalculates every open deal whose last score is older than the freshness
threshold so pure time decay keeps advancing without new events.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime

from app.config import settings
from app.features.pipeline_scoring.domain import ActiveDealFilters, BatchStepResult, Deal
from app.features.pipeline_scoring.repository import DealRepository, PostgresDealRepository
from app.infrastructure.observability.logging import get_logger, log_batch_step

from .batch import BatchOptions, alert_on_error_rate, map_isolated, summarize
from .recalculation_service import RecalculationService, recalculation_service

logger = get_logger(__name__)

STALE_SWEEP_REASON = "stale_sweep"
MANUAL_REFRESH_REASON = "manual_refresh"


class StaleScoreSweeper:
    def __init__(
        self,
        deals: DealRepository | None = None,
        recalculator: RecalculationService | None = None,
        options: BatchOptions | None = None,
        threshold_hours: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.deals = deals or PostgresDealRepository()
        self.recalculator = recalculator or recalculation_service
        self.options = options or BatchOptions.from_settings()
        self.threshold_hours = (
            threshold_hours
            if threshold_hours is not None
            else settings.PIPELINE_STALE_THRESHOLD_HOURS
        )
        self.clock = clock or (lambda: datetime.now(UTC))

    async def find_stale(self, now: datetime | None = None) -> list[Deal]:
        return await self.deals.list_stale(self.threshold_hours, now or self.clock())

    async def sweep(self, now: datetime | None = None) -> BatchStepResult:
        """
        Recalculate every stale open deal, oldest score first.

        Raises:
            TransientStorageError: the stale set could not be selected
        """
        started = time.perf_counter()
        stale = await self.find_stale(now)
        logger.info(
            "Stale deals selected",
            deal_count=len(stale),
            threshold_hours=self.threshold_hours,
        )
        return await self._recalculate_all(stale, STALE_SWEEP_REASON, started)

    async def recalculate_all_active(
        self,
        reason: str = MANUAL_REFRESH_REASON,
        filters: ActiveDealFilters | None = None,
    ) -> BatchStepResult:
        """Recalculate every open deal regardless of how fresh its score is."""
        started = time.perf_counter()
        deals = await self.deals.list_active(filters)
        logger.info("Refreshing all active deal scores", deal_count=len(deals), reason=reason)
        return await self._recalculate_all(deals, reason, started)

    async def _recalculate_all(
        self, deals: list[Deal], reason: str, started: float
    ) -> BatchStepResult:
        async def recalculate(deal: Deal):
            return await self.recalculator.recalculate(deal.id, reason)

        results = await map_isolated(deals, recalculate, self.options)
        summary = summarize(results, lambda deal: deal.id, started)
        log_batch_step(reason, summary.to_dict())
        alert_on_error_rate(reason, summary)
        return summary


stale_score_sweeper = StaleScoreSweeper()
