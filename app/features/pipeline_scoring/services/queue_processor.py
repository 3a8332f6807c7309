"""
Event queue processor.

Drains pending recalculation requests in one pass. Requests are grouped
per deal so a deal with several queued events is scored once, then every
request in the group is marked with that outcome.
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field

from app.config import settings
from app.features.pipeline_scoring.domain import (
    BatchStepResult,
    PipelineScoringError,
    QueuedRecalculationRequest,
    RecalculationOutcome,
)
from app.features.pipeline_scoring.repository import PostgresQueueRepository, QueueRepository
from app.infrastructure.observability.logging import get_logger, log_batch_step

from .batch import BatchOptions, ItemResult, alert_on_error_rate, map_isolated, summarize
from .recalculation_service import RecalculationService, recalculation_service

logger = get_logger(__name__)


@dataclass(slots=True)
class DealRequests:
    """All pending requests for one deal, coalesced into a single pass."""

    deal_id: str
    requests: list[QueuedRecalculationRequest] = field(default_factory=list)

    @property
    def reason(self) -> str:
        return max(self.requests, key=lambda r: r.enqueued_at).reason

    @property
    def request_ids(self) -> list[str]:
        return [r.id for r in self.requests]


def group_by_deal(requests: list[QueuedRecalculationRequest]) -> list[DealRequests]:
    grouped: dict[str, DealRequests] = {}
    for request in requests:
        grouped.setdefault(request.deal_id, DealRequests(request.deal_id)).requests.append(request)
    return list(grouped.values())


class QueueProcessor:
    def __init__(
        self,
        queue: QueueRepository | None = None,
        recalculator: RecalculationService | None = None,
        options: BatchOptions | None = None,
        batch_limit: int | None = None,
    ):
        self.queue = queue or PostgresQueueRepository()
        self.recalculator = recalculator or recalculation_service
        self.options = options or BatchOptions.from_settings()
        self.batch_limit = batch_limit or settings.PIPELINE_QUEUE_BATCH_LIMIT

    async def process(self, limit: int | None = None) -> BatchStepResult:
        """
        Claim and process one bounded batch of pending requests.

        Raises:
            TransientStorageError: the pending batch could not be fetched
        """
        started = time.perf_counter()
        requests = await self.queue.dequeue_pending(limit or self.batch_limit)
        if not requests:
            logger.info("No pending recalculation requests")
            return summarize([], lambda group: group.deal_id, started)

        groups = group_by_deal(requests)
        logger.info(
            "Processing recalculation queue",
            request_count=len(requests),
            deal_count=len(groups),
        )

        results = await map_isolated(groups, self._recalculate_group, self.options)
        await self._mark_results(results)

        summary = summarize(results, lambda group: group.deal_id, started)
        log_batch_step("event_queue", summary.to_dict())
        alert_on_error_rate("event_queue", summary)
        return summary

    async def _recalculate_group(self, group: DealRequests) -> RecalculationOutcome | None:
        return await self.recalculator.recalculate(group.deal_id, group.reason)

    async def _mark_results(self, results: list[ItemResult[DealRequests, RecalculationOutcome]]):
        by_status: dict[str, list[str]] = defaultdict(list)
        for result in results:
            if result.status == "failed":
                await self._mark(result.item.request_ids, "failed", result.error)
            else:
                by_status[result.status].extend(result.item.request_ids)

        for status, request_ids in by_status.items():
            await self._mark(request_ids, status)

    async def _mark(self, request_ids: list[str], status: str, error: str | None = None) -> None:
        # An unmarked request stays claimed and is picked up again once the claim expires
        try:
            await self.queue.mark(request_ids, status, error)
        except PipelineScoringError as e:
            logger.error(
                "Failed to mark recalculation requests",
                status=status,
                request_count=len(request_ids),
                error=str(e),
            )


queue_processor = QueueProcessor()
