"""
Domain models for the pipeline scoring feature.

Plain dataclasses shared by the calculator, repositories, services and the
API layer. Deals are "recommendations" in the portal's business language.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

DealStatus = Literal["draft", "sent", "declined", "accepted", "archived"]
Direction = Literal["inbound", "outbound"]
Channel = Literal["email", "sms", "chat", "call", "other"]
EventSource = Literal["manual", "webhook", "system"]
EventType = Literal["message", "email_opened", "proposal_sent", "proposal_viewed"]
RequestStatus = Literal["pending", "processing", "succeeded", "failed", "skipped"]
RunType = Literal["event_queue", "stale_sweep", "manual_refresh"]

# Open pipeline: deals that still decay and get swept
ACTIVE_STATUSES: frozenset[str] = frozenset({"sent", "declined"})
TERMINAL_STATUSES: frozenset[str] = frozenset({"accepted", "archived"})

DIRECTIONS: frozenset[str] = frozenset({"inbound", "outbound"})
CHANNELS: frozenset[str] = frozenset({"email", "sms", "chat", "call", "other"})
EVENT_TYPES: frozenset[str] = frozenset(
    {"message", "email_opened", "proposal_sent", "proposal_viewed"}
)


@dataclass(slots=True)
class Deal:
    """One sales opportunity (a recommendation row)."""

    id: str
    status: str
    owner_id: str | None
    created_at: datetime
    sent_at: datetime | None = None
    archived_at: datetime | None = None
    archive_reason: str | None = None
    current_score: int | None = None
    stage: str | None = None
    last_scored_at: datetime | None = None
    predicted_monthly: float = 0.0
    predicted_onetime: float = 0.0
    predicted_tier: str | None = None
    snoozed_until: datetime | None = None
    revived_at: datetime | None = None
    weighted_monthly: float = 0.0
    weighted_onetime: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(slots=True)
class CommunicationEvent:
    """A single touchpoint or tracking signal tied to a deal."""

    deal_id: str
    direction: str
    channel: str
    contact_at: datetime
    source: str = "manual"
    event_type: str = "message"
    external_id: str | None = None
    notes: str | None = None
    id: str | None = None


@dataclass(slots=True)
class ScoreResult:
    """Output of one calculator pass. No identity, never persisted directly."""

    score: int
    stage: str
    breakdown: dict[str, float]
    base_score: float
    total_penalties: float
    weighted_monthly: float = 0.0
    weighted_onetime: float = 0.0


@dataclass(slots=True)
class ScoreHistoryEntry:
    """Immutable audit row appended by every recalculation."""

    deal_id: str
    score: int
    stage: str
    scored_at: datetime
    reason: str
    breakdown: dict[str, float] = field(default_factory=dict)
    weighted_monthly: float = 0.0
    weighted_onetime: float = 0.0
    id: str | None = None


@dataclass(slots=True)
class QueuedRecalculationRequest:
    """A unit of work in the durable recalculation queue."""

    id: str
    deal_id: str
    reason: str
    enqueued_at: datetime
    status: str = "pending"
    claimed_at: datetime | None = None
    processed_at: datetime | None = None
    error: str | None = None


@dataclass(slots=True)
class RecalculationOutcome:
    """What the trigger hands back after persisting a new score."""

    deal_id: str
    score: int
    stage: str
    breakdown: dict[str, float]
    reason: str
    scored_at: datetime
    previous_score: int | None = None
    weighted_monthly: float = 0.0
    weighted_onetime: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "deal_id": self.deal_id,
            "score": self.score,
            "stage": self.stage,
            "breakdown": dict(self.breakdown),
            "reason": self.reason,
            "scored_at": self.scored_at.isoformat(),
            "previous_score": self.previous_score,
            "weighted_monthly": self.weighted_monthly,
            "weighted_onetime": self.weighted_onetime,
        }


@dataclass(slots=True)
class ItemError:
    deal_id: str
    error: str

    def to_dict(self) -> dict[str, str]:
        return {"deal_id": self.deal_id, "error": self.error}


@dataclass(slots=True)
class BatchStepResult:
    """Aggregate counts for one batch step (queue drain or stale sweep)."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    duration_ms: int = 0
    errors: list[ItemError] = field(default_factory=list)

    @property
    def failure_rate(self) -> float:
        if self.processed == 0:
            return 0.0
        return self.failed / self.processed

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "duration_ms": self.duration_ms,
            "errors": [error.to_dict() for error in self.errors],
        }


@dataclass(slots=True)
class DailyBatchReport:
    queue_results: BatchStepResult
    stale_results: BatchStepResult
    total_duration_ms: int
    started_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "queue_results": self.queue_results.to_dict(),
            "stale_results": self.stale_results.to_dict(),
            "total_duration_ms": self.total_duration_ms,
            "started_at": self.started_at.isoformat(),
        }


@dataclass(slots=True)
class ArchiveAnalyticsFilters:
    archived_after: datetime | None = None
    archived_before: datetime | None = None
    owner_id: str | None = None


@dataclass(slots=True)
class ActiveDealFilters:
    """Optional narrowing for active-deal listings."""

    owner_id: str | None = None
    predicted_tier: str | None = None
    sent_after: datetime | None = None
    sent_before: datetime | None = None
    include_archived: bool = False


@dataclass(slots=True)
class ReasonBreakdown:
    reason: str
    count: int
    monthly_lost: float
    onetime_lost: float
    percentage: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "count": self.count,
            "monthly_lost": self.monthly_lost,
            "onetime_lost": self.onetime_lost,
            "percentage": self.percentage,
        }


@dataclass(slots=True)
class ArchiveAnalytics:
    total_archived: int
    lost_monthly: float
    lost_onetime: float
    avg_days_to_archive: int
    top_reason: str | None
    top_reason_percentage: int
    reasons_breakdown: list[ReasonBreakdown] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_archived": self.total_archived,
            "lost_monthly": self.lost_monthly,
            "lost_onetime": self.lost_onetime,
            "avg_days_to_archive": self.avg_days_to_archive,
            "top_reason": self.top_reason,
            "top_reason_percentage": self.top_reason_percentage,
            "reasons_breakdown": [item.to_dict() for item in self.reasons_breakdown],
        }


@dataclass(slots=True)
class RevenueBucket:
    weighted_mrr: int = 0
    raw_mrr: int = 0
    deal_count: int = 0
    avg_confidence: int | None = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "weighted_mrr": self.weighted_mrr,
            "raw_mrr": self.raw_mrr,
            "deal_count": self.deal_count,
        }
        if self.avg_confidence is not None:
            data["avg_confidence"] = self.avg_confidence
        return data


@dataclass(slots=True)
class ClosingSoonDeal:
    deal_id: str
    owner_id: str | None
    predicted_monthly: float
    confidence_score: int
    weighted_monthly: float
    age_days: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommendation_id": self.deal_id,
            "owner_id": self.owner_id,
            "predicted_monthly": self.predicted_monthly,
            "confidence_score": self.confidence_score,
            "weighted_monthly": self.weighted_monthly,
            "age_days": self.age_days,
        }


@dataclass(slots=True)
class PipelineRevenueSummary:
    """Open deals bucketed by score for MRR projection."""

    current_mrr: float
    active_client_count: int
    closing_soon: RevenueBucket
    in_pipeline: RevenueBucket
    at_risk: RevenueBucket
    on_hold: RevenueBucket
    projected_mrr: int
    potential_growth: int
    last_updated: datetime | None = None
    closing_soon_deals: list[ClosingSoonDeal] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_mrr": self.current_mrr,
            "active_client_count": self.active_client_count,
            "closing_soon": self.closing_soon.to_dict(),
            "in_pipeline": self.in_pipeline.to_dict(),
            "at_risk": self.at_risk.to_dict(),
            "on_hold": self.on_hold.to_dict(),
            "projected_mrr": self.projected_mrr,
            "potential_growth": self.potential_growth,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "closing_soon_deals": [deal.to_dict() for deal in self.closing_soon_deals],
        }

@dataclass(slots=True)
class SignalChange:
    signal: str
    previous: float | None
    current: float | None
    delta: float


@dataclass(slots=True)
class AuditEntry:
    """A history row plus what changed since the row before it."""

    entry: ScoreHistoryEntry
    score_delta: int | None = None
    weighted_monthly_delta: float | None = None
    changes: list[SignalChange] = field(default_factory=list)
