"""
Pipeline Score Background Job - daily deal-score maintenance.

Once a day (PIPELINE_SCHEDULE_HOUR_UTC) this job:
1. Drains the recalculation queue fed by communication/tracking events
2. Sweeps every open deal whose score is older than 23 hours

Design:
- Each deal commits independently, so a run cut short by the wall-clock
  budget still leaves its completed recalculations in place
- A failed run is logged and retried at the next scheduled time
- Runs as its own worker process (see app/jobs/worker.py)

Usage:
    python -m app.jobs.worker pipeline_scores        # long-running scheduler
    python -m app.jobs.worker pipeline_scores_once   # single run, then exit
"""

import asyncio
from datetime import UTC, datetime, timedelta

from app.config import settings
from app.db.pool import db_pool
from app.features.pipeline_scoring.services import BatchOrchestrator, batch_orchestrator
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class PipelineScoreJob:
    """Runs the daily orchestrator under an overall time budget."""

    def __init__(self, orchestrator: BatchOrchestrator | None = None):
        self.orchestrator = orchestrator or batch_orchestrator
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.last_report: dict | None = None

    async def run_once(self) -> dict:
        """
        Run one daily cycle.

        Returns:
            dict: the combined report, or {"skipped": True, ...} if a run is in progress

        Raises:
            TimeoutError: the run exceeded PIPELINE_BATCH_TIMEOUT_SECONDS
            PipelineScoringError: a step could not start (storage unreachable)
        """
        if self.is_running:
            logger.warning("Pipeline score job already running, skipping")
            return {"skipped": True, "reason": "already_running"}

        self.is_running = True
        try:
            report = await asyncio.wait_for(
                self.orchestrator.run_daily(),
                timeout=settings.PIPELINE_BATCH_TIMEOUT_SECONDS,
            )
            self.last_run_time = datetime.now(UTC)
            self.last_report = report.to_dict()
            return self.last_report
        finally:
            self.is_running = False

    def get_job_status(self) -> dict:
        return {
            "job_name": "pipeline_scores",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "schedule_hour_utc": settings.PIPELINE_SCHEDULE_HOUR_UTC,
            "timeout_seconds": settings.PIPELINE_BATCH_TIMEOUT_SECONDS,
            "last_report": self.last_report,
        }


def seconds_until_next_run(now: datetime, schedule_hour: int) -> tuple[datetime, float]:
    next_run = now.replace(hour=schedule_hour, minute=0, second=0, microsecond=0)
    if now >= next_run:
        next_run += timedelta(days=1)
    return next_run, (next_run - now).total_seconds()


# ==========================================================================
# SCHEDULER
# ==========================================================================


async def start_pipeline_score_scheduler():
    """Open the pool and run the daily cycle at the configured UTC hour, forever."""
    if not settings.PIPELINE_SCHEDULER_ENABLED:
        logger.info("Pipeline score scheduler DISABLED", environment=settings.environment)
        return

    schedule_hour = settings.PIPELINE_SCHEDULE_HOUR_UTC
    await db_pool.initialize()
    logger.info(
        "Pipeline score scheduler STARTED",
        schedule_hour=schedule_hour,
        environment=settings.environment,
    )

    try:
        while True:
            next_run, sleep_seconds = seconds_until_next_run(datetime.now(UTC), schedule_hour)
            logger.info(
                "Pipeline score job scheduled",
                next_run=next_run.isoformat(),
                sleep_seconds=sleep_seconds,
            )
            await asyncio.sleep(sleep_seconds)

            try:
                report = await pipeline_score_job.run_once()
                logger.info("Scheduled pipeline score job completed", report=report)
            except TimeoutError:
                logger.error(
                    "Pipeline score job exceeded time budget; completed deals were kept",
                    timeout_seconds=settings.PIPELINE_BATCH_TIMEOUT_SECONDS,
                )
            except Exception as e:
                logger.error(
                    "Pipeline score job failed, retrying at next scheduled run",
                    error=str(e),
                    error_type=type(e).__name__,
                )

    except asyncio.CancelledError:
        logger.info("Pipeline score scheduler cancelled")
    finally:
        await db_pool.close()


async def run_pipeline_scores_once():
    """Single run for cron-style invocation; exits non-zero on failure."""
    await db_pool.initialize()
    try:
        report = await pipeline_score_job.run_once()
        logger.info("Pipeline score run completed", report=report)
    finally:
        await db_pool.close()


# Singleton instance for manual triggers
pipeline_score_job = PipelineScoreJob()
