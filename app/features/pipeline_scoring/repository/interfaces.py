"""
Storage interfaces the scoring services depend on.

Services only see these protocols. The Postgres implementations live
beside this module; tests plug in in-memory versions.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from app.features.pipeline_scoring.domain import (
    ActiveDealFilters,
    ArchiveAnalyticsFilters,
    BatchStepResult,
    CommunicationEvent,
    Deal,
    QueuedRecalculationRequest,
    ScoreHistoryEntry,
)


class DealRepository(Protocol):
    async def get(self, deal_id: str) -> Deal | None: ...

    async def update_score(
        self,
        deal_id: str,
        score: int,
        stage: str,
        scored_at: datetime,
        weighted_monthly: float,
        weighted_onetime: float,
    ) -> None: ...

    async def list_stale(
        self, threshold_hours: float, now: datetime, limit: int | None = None
    ) -> list[Deal]: ...

    async def list_active(self, filters: ActiveDealFilters | None = None) -> list[Deal]: ...

    async def list_revenue_deals(self, owner_id: str | None = None) -> list[Deal]:
        """Sent, unarchived deals ordered by score descending, unscored last."""
        ...

    async def archive_summary(self, filters: ArchiveAnalyticsFilters) -> dict[str, Any]:
        """Totals row: total_archived, lost_monthly, lost_onetime, avg_days_to_archive."""
        ...

    async def archive_reasons(self, filters: ArchiveAnalyticsFilters) -> list[dict[str, Any]]:
        """One row per reason: reason, count, monthly_lost, onetime_lost; count desc."""
        ...


class EventRepository(Protocol):
    async def append(self, event: CommunicationEvent) -> bool:
        """Insert the event. False when its external_id was already ingested."""
        ...

    async def list_for_deal(self, deal_id: str) -> list[CommunicationEvent]: ...


class ScoreHistoryRepository(Protocol):
    async def append(self, entry: ScoreHistoryEntry) -> ScoreHistoryEntry: ...

    async def latest(self, deal_id: str) -> ScoreHistoryEntry | None: ...

    async def list_for_deal(self, deal_id: str, limit: int = 50) -> list[ScoreHistoryEntry]:
        """Newest first."""
        ...


class QueueRepository(Protocol):
    async def enqueue(self, deal_id: str, reason: str) -> bool:
        """False when a pending request for the deal already exists."""
        ...

    async def dequeue_pending(self, limit: int) -> list[QueuedRecalculationRequest]:
        """Claim pending requests (status becomes processing), oldest first."""
        ...

    async def mark(
        self, request_ids: Sequence[str], status: str, error: str | None = None
    ) -> None: ...


class ScoringRunRepository(Protocol):
    async def record(self, run_type: str, result: BatchStepResult) -> None: ...
