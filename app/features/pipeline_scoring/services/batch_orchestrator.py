"""
Daily batch orchestrator.

Runs the queue processor, then the stale sweeper, and returns a combined
report. Item failures are already folded into each step's counts; only
run-level errors (storage unreachable) escape to the caller. Each step is
also written to the scoring-runs log, and a failure to write that log is
logged without failing the run.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime

from app.features.pipeline_scoring.domain import (
    BatchStepResult,
    DailyBatchReport,
    PipelineScoringError,
)
from app.features.pipeline_scoring.repository import (
    PostgresScoringRunRepository,
    ScoringRunRepository,
)
from app.infrastructure.observability.logging import batch_run_context, get_logger

from .queue_processor import QueueProcessor, queue_processor
from .stale_sweeper import MANUAL_REFRESH_REASON, StaleScoreSweeper, stale_score_sweeper

logger = get_logger(__name__)


class BatchOrchestrator:
    def __init__(
        self,
        processor: QueueProcessor | None = None,
        sweeper: StaleScoreSweeper | None = None,
        runs: ScoringRunRepository | None = None,
    ):
        self.processor = processor or queue_processor
        self.sweeper = sweeper or stale_score_sweeper
        self.runs = runs or PostgresScoringRunRepository()

    async def run_daily(self) -> DailyBatchReport:
        with batch_run_context("daily"):
            return await self._run_daily()

    async def _run_daily(self) -> DailyBatchReport:
        started_at = datetime.now(UTC)
        started = time.perf_counter()
        logger.info("Starting daily pipeline scoring run", started_at=started_at.isoformat())

        queue_results = await self.processor.process()
        await self._record_run("event_queue", queue_results)

        stale_results = await self.sweeper.sweep()
        await self._record_run("stale_sweep", stale_results)

        report = DailyBatchReport(
            queue_results=queue_results,
            stale_results=stale_results,
            total_duration_ms=int((time.perf_counter() - started) * 1000),
            started_at=started_at,
        )
        logger.info(
            "Daily pipeline scoring run completed",
            total_duration_ms=report.total_duration_ms,
            queue_processed=queue_results.processed,
            queue_failed=queue_results.failed,
            stale_processed=stale_results.processed,
            stale_failed=stale_results.failed,
        )
        return report

    async def refresh_all(self) -> BatchStepResult:
        """Recalculate every active deal now (admin "refresh scores")."""
        with batch_run_context("manual_refresh"):
            result = await self.sweeper.recalculate_all_active(MANUAL_REFRESH_REASON)
            await self._record_run("manual_refresh", result)
            return result

    async def _record_run(self, run_type: str, result: BatchStepResult) -> None:
        try:
            await self.runs.record(run_type, result)
        except PipelineScoringError as e:
            logger.error("Failed to record scoring run", run_type=run_type, error=str(e))


batch_orchestrator = BatchOrchestrator()
