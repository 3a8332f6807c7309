"""
Score audit: history with what changed between consecutive entries.
"""

from __future__ import annotations

from app.features.pipeline_scoring.domain import (
    AuditEntry,
    NotFound,
    ScoreHistoryEntry,
    SignalChange,
    ValidationError,
)
from app.features.pipeline_scoring.repository import (
    DealRepository,
    PostgresDealRepository,
    PostgresScoreHistoryRepository,
    ScoreHistoryRepository,
)

MAX_AUDIT_LIMIT = 200


def diff_entries(current: ScoreHistoryEntry, previous: ScoreHistoryEntry | None) -> AuditEntry:
    if previous is None:
        return AuditEntry(entry=current)

    changes = []
    for signal in sorted(set(current.breakdown) | set(previous.breakdown)):
        before = previous.breakdown.get(signal)
        after = current.breakdown.get(signal)
        if before == after:
            continue
        changes.append(
            SignalChange(
                signal=signal,
                previous=before,
                current=after,
                delta=round((after or 0.0) - (before or 0.0), 2),
            )
        )

    return AuditEntry(
        entry=current,
        score_delta=current.score - previous.score,
        weighted_monthly_delta=round(current.weighted_monthly - previous.weighted_monthly, 2),
        changes=changes,
    )


class ScoreAuditService:
    def __init__(
        self,
        deals: DealRepository | None = None,
        history: ScoreHistoryRepository | None = None,
    ):
        self.deals = deals or PostgresDealRepository()
        self.history = history or PostgresScoreHistoryRepository()

    async def get_history(self, deal_id: str, limit: int = 50) -> list[ScoreHistoryEntry]:
        await self._require_deal(deal_id)
        return await self.history.list_for_deal(deal_id, self._clamp(limit))

    async def get_audit_trail(self, deal_id: str, limit: int = 50) -> list[AuditEntry]:
        """Newest first; each entry is compared with the one scored before it."""
        await self._require_deal(deal_id)
        # One extra row so the oldest returned entry still has something to diff against
        entries = await self.history.list_for_deal(deal_id, self._clamp(limit) + 1)
        trail = []
        for index, entry in enumerate(entries[: self._clamp(limit)]):
            previous = entries[index + 1] if index + 1 < len(entries) else None
            trail.append(diff_entries(entry, previous))
        return trail

    async def _require_deal(self, deal_id: str) -> None:
        if await self.deals.get(deal_id) is None:
            raise NotFound(deal_id, operation="score_audit")

    @staticmethod
    def _clamp(limit: int) -> int:
        if limit < 1:
            raise ValidationError("limit must be positive", operation="score_audit")
        return min(limit, MAX_AUDIT_LIMIT)


score_audit_service = ScoreAuditService()
