"""
Recalculation trigger.

One scoring pass for one deal: load the deal and its events, run the
calculator, append a history row and update the deal's current score.
Storage errors surface to the caller; nothing is retried here.

RecalculationDispatcher wraps the trigger for fire-and-forget callers
(webhooks, mutation endpoints). It returns immediately, runs the pass in
a background task and logs any failure instead of propagating it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

from app.features.pipeline_scoring.domain import (
    NotFound,
    PipelineScoringError,
    RecalculationOutcome,
    ScoreHistoryEntry,
    ScoreResult,
    ValidationError,
)
from app.features.pipeline_scoring.repository import (
    DealRepository,
    EventRepository,
    PostgresDealRepository,
    PostgresEventRepository,
    PostgresScoreHistoryRepository,
    ScoreHistoryRepository,
)
from app.features.pipeline_scoring.scoring import ScoreCalculator, load_scoring_config
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_REASON_LENGTH = 64


def validate_trigger_input(deal_id: str | None, reason: str | None) -> tuple[str, str]:
    if not isinstance(deal_id, str) or not deal_id.strip():
        raise ValidationError("deal_id is required", operation="trigger_recalculation")
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("reason is required", operation="trigger_recalculation")
    reason = reason.strip()
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(
            f"reason must be at most {MAX_REASON_LENGTH} characters",
            operation="trigger_recalculation",
        )
    return deal_id.strip(), reason


class RecalculationService:
    def __init__(
        self,
        deals: DealRepository | None = None,
        events: EventRepository | None = None,
        history: ScoreHistoryRepository | None = None,
        calculator: ScoreCalculator | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.deals = deals or PostgresDealRepository()
        self.events = events or PostgresEventRepository()
        self.history = history or PostgresScoreHistoryRepository()
        self._calculator = calculator
        self.clock = clock or (lambda: datetime.now(UTC))
        self._writes: set[asyncio.Task] = set()

    @property
    def calculator(self) -> ScoreCalculator:
        # Built lazily so a bad config override fails the first pass, not the import
        if self._calculator is None:
            self._calculator = ScoreCalculator(load_scoring_config())
        return self._calculator

    async def recalculate(self, deal_id: str, reason: str) -> RecalculationOutcome | None:
        """
        Recalculate and persist one deal's score.

        Returns:
            The new score, or None when the deal is terminal (accepted/archived)

        Raises:
            ValidationError: empty deal_id or reason
            NotFound: deal does not exist
            TransientStorageError: a read or write failed
            ComputationError: event data could not be interpreted
        """
        deal_id, reason = validate_trigger_input(deal_id, reason)

        deal = await self.deals.get(deal_id)
        if deal is None:
            raise NotFound(deal_id)

        if deal.is_terminal:
            logger.debug("Skipping terminal deal", deal_id=deal_id, status=deal.status)
            return None

        events = await self.events.list_for_deal(deal_id)
        now = self.clock()
        result = self.calculator.compute(deal, events, now)

        # History row and deal update land together even if the caller times out
        write = asyncio.create_task(
            self._persist(deal_id, reason, result, now), name=f"persist-score:{deal_id}"
        )
        self._writes.add(write)
        write.add_done_callback(self._writes.discard)
        entry = await asyncio.shield(write)

        logger.info(
            "Deal score recalculated",
            deal_id=deal_id,
            reason=reason,
            score=result.score,
            previous_score=deal.current_score,
            stage=result.stage,
            event_count=len(events),
        )

        return RecalculationOutcome(
            deal_id=deal_id,
            score=result.score,
            stage=result.stage,
            breakdown=result.breakdown,
            reason=reason,
            scored_at=entry.scored_at,
            previous_score=deal.current_score,
            weighted_monthly=result.weighted_monthly,
            weighted_onetime=result.weighted_onetime,
        )

    async def _persist(
        self, deal_id: str, reason: str, result: ScoreResult, now: datetime
    ) -> ScoreHistoryEntry:
        entry = await self.history.append(
            ScoreHistoryEntry(
                deal_id=deal_id,
                score=result.score,
                stage=result.stage,
                scored_at=now,
                reason=reason,
                breakdown=result.breakdown,
                weighted_monthly=result.weighted_monthly,
                weighted_onetime=result.weighted_onetime,
            )
        )
        await self.deals.update_score(
            deal_id,
            result.score,
            result.stage,
            entry.scored_at,
            result.weighted_monthly,
            result.weighted_onetime,
        )
        return entry

    async def wait_for_writes(self) -> None:
        """Wait for score writes whose caller was cancelled (shutdown, tests)."""
        if self._writes:
            await asyncio.gather(*self._writes, return_exceptions=True)


class RecalculationDispatcher:
    """Fire-and-forget submission of recalculations onto the running event loop."""

    def __init__(self, service: RecalculationService):
        self.service = service
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def trigger_recalculation(self, deal_id: str, reason: str) -> asyncio.Task:
        """
        Schedule a recalculation and return without waiting for it.

        Input is validated synchronously so malformed calls fail loudly.
        The returned task never raises; failures are logged.
        """
        deal_id, reason = validate_trigger_input(deal_id, reason)
        task = asyncio.create_task(
            self._run(deal_id, reason), name=f"recalculate:{deal_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, deal_id: str, reason: str) -> None:
        try:
            await self.service.recalculate(deal_id, reason)
        except NotFound:
            logger.info("Recalculation skipped, deal not found", deal_id=deal_id, reason=reason)
        except PipelineScoringError as e:
            logger.error(
                "Background recalculation failed",
                deal_id=deal_id,
                reason=reason,
                error=str(e),
                operation=e.operation,
            )
        except Exception:
            logger.exception(
                "Unexpected error in background recalculation", deal_id=deal_id, reason=reason
            )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for outstanding background recalculations (shutdown, tests)."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        if still_running:
            logger.warning(
                "Background recalculations still running after drain timeout",
                remaining=len(still_running),
            )
            for task in still_running:
                task.cancel()


recalculation_service = RecalculationService()
recalculation_dispatcher = RecalculationDispatcher(recalculation_service)


def trigger_recalculation(deal_id: str, reason: str) -> asyncio.Task:
    """Module-level entrypoint for fire-and-forget callers."""
    return recalculation_dispatcher.trigger_recalculation(deal_id, reason)
