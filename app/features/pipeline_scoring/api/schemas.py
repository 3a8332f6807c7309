"""
Request/response models for the pipeline scoring API.
"""

from datetime import datetime
from typing import Literal

from pydantic import AwareDatetime, BaseModel, Field, model_validator


class RecalculateRequest(BaseModel):
    """Body for POST /pipeline/recalculate. Pass one id or a list."""

    recommendation_id: str | None = Field(None, min_length=1)
    recommendation_ids: list[str] | None = Field(None, min_length=1, max_length=500)
    reason: str = Field("manual", min_length=1, max_length=64)

    @model_validator(mode="after")
    def _one_target(self):
        if not self.recommendation_id and not self.recommendation_ids:
            raise ValueError("recommendation_id or recommendation_ids is required")
        return self

    def targets(self) -> list[str]:
        ids = list(self.recommendation_ids or [])
        if self.recommendation_id:
            ids.insert(0, self.recommendation_id)
        return list(dict.fromkeys(ids))


class TriggerRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=64)


class ScoreResponse(BaseModel):
    recommendation_id: str
    status: Literal["succeeded", "failed", "skipped"]
    score: int | None = None
    stage: str | None = None
    previous_score: int | None = None
    breakdown: dict[str, float] = Field(default_factory=dict)
    weighted_monthly: float | None = None
    weighted_onetime: float | None = None
    scored_at: datetime | None = None
    error: str | None = None


class RecalculateResponse(BaseModel):
    results: list[ScoreResponse]


class ItemErrorResponse(BaseModel):
    deal_id: str
    error: str


class BatchStepResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    skipped: int
    duration_ms: int
    errors: list[ItemErrorResponse] = Field(default_factory=list)


class DailyBatchResponse(BaseModel):
    success: bool = True
    queue_results: BatchStepResponse
    stale_results: BatchStepResponse
    total_duration_ms: int
    started_at: datetime


class ReasonBreakdownResponse(BaseModel):
    reason: str
    count: int
    monthly_lost: float
    onetime_lost: float
    percentage: int


class ArchiveAnalyticsResponse(BaseModel):
    total_archived: int
    lost_monthly: float
    lost_onetime: float
    avg_days_to_archive: int
    top_reason: str | None
    top_reason_percentage: int
    reasons_breakdown: list[ReasonBreakdownResponse]


class RevenueBucketResponse(BaseModel):
    weighted_mrr: int
    raw_mrr: int
    deal_count: int
    avg_confidence: int | None = None


class ClosingSoonDealResponse(BaseModel):
    recommendation_id: str
    owner_id: str | None
    predicted_monthly: float
    confidence_score: int
    weighted_monthly: float
    age_days: int


class RevenueSummaryResponse(BaseModel):
    current_mrr: float
    active_client_count: int
    closing_soon: RevenueBucketResponse
    in_pipeline: RevenueBucketResponse
    at_risk: RevenueBucketResponse
    on_hold: RevenueBucketResponse
    projected_mrr: int
    potential_growth: int
    last_updated: datetime | None
    closing_soon_deals: list[ClosingSoonDealResponse]


class ScoreHistoryItem(BaseModel):
    id: str | None
    score: int
    stage: str
    reason: str
    scored_at: datetime
    breakdown: dict[str, float]
    weighted_monthly: float
    weighted_onetime: float


class ScoreHistoryResponse(BaseModel):
    recommendation_id: str
    history: list[ScoreHistoryItem]


class SignalChangeResponse(BaseModel):
    signal: str
    previous: float | None
    current: float | None
    delta: float


class ScoreAuditItem(ScoreHistoryItem):
    score_delta: int | None = None
    weighted_monthly_delta: float | None = None
    changes: list[SignalChangeResponse] = Field(default_factory=list)


class ScoreAuditResponse(BaseModel):
    recommendation_id: str
    audit: list[ScoreAuditItem]


class CommunicationRequest(BaseModel):
    """A manual log entry or a normalised webhook delivery."""

    recommendation_id: str = Field(..., min_length=1)
    direction: Literal["inbound", "outbound"]
    channel: Literal["email", "sms", "chat", "call", "other"] | None = None
    message_type: str | None = Field(
        None, description="Raw CRM message type, mapped onto channel when channel is omitted"
    )
    event_type: Literal["message", "email_opened", "proposal_sent", "proposal_viewed"] = "message"
    contact_at: AwareDatetime
    source: Literal["manual", "webhook", "system"] = "manual"
    external_id: str | None = Field(None, max_length=255)
    notes: str | None = Field(None, max_length=5000)


class CommunicationResponse(BaseModel):
    recommendation_id: str
    created: bool
    duplicate: bool
