"""
Pipeline scoring routes.

- POST /pipeline/recalculate                  recalculate now, return new scores
- POST /pipeline/deals/{id}/trigger           fire-and-forget recalculation
- POST /pipeline/refresh-scores               recalculate every active deal
- POST /pipeline/communications               log a communication (idempotent)
- GET  /pipeline/archive-analytics            lost-deal aggregates
- GET  /pipeline/revenue-summary              open deals bucketed for MRR projection
- GET  /pipeline/deals/{id}/score-history     score trend
- GET  /pipeline/deals/{id}/score-audit       history with per-signal deltas
- GET|POST /cron/pipeline-scores              daily batch, bearer CRON_SECRET
"""

import asyncio
import hmac
from datetime import datetime

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from app.config import settings
from app.features.pipeline_scoring.domain import (
    ArchiveAnalyticsFilters,
    CommunicationEvent,
    NotFound,
    PipelineScoringError,
    ScoreHistoryEntry,
    TransientStorageError,
    ValidationError,
)
from app.features.pipeline_scoring.services import (
    ArchiveAnalyticsService,
    BatchOrchestrator,
    CommunicationIngestionService,
    PipelineRevenueService,
    RecalculationDispatcher,
    RecalculationService,
    ScoreAuditService,
    archive_analytics_service,
    batch_orchestrator,
    communication_ingestion_service,
    map_external_channel,
    pipeline_revenue_service,
    recalculation_dispatcher,
    recalculation_service,
    score_audit_service,
)
from app.features.pipeline_scoring.services.batch import BatchOptions, map_isolated
from app.infrastructure.observability.logging import get_logger

from .schemas import (
    ArchiveAnalyticsResponse,
    BatchStepResponse,
    CommunicationRequest,
    CommunicationResponse,
    DailyBatchResponse,
    RecalculateRequest,
    RecalculateResponse,
    RevenueSummaryResponse,
    ScoreAuditItem,
    ScoreAuditResponse,
    ScoreHistoryItem,
    ScoreHistoryResponse,
    ScoreResponse,
    TriggerRequest,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/pipeline", tags=["pipeline"])
cron_router = APIRouter(prefix="/cron", tags=["cron"])


# Dependencies (overridden in tests)
def get_recalculation_service() -> RecalculationService:
    return recalculation_service


def get_recalculation_dispatcher() -> RecalculationDispatcher:
    return recalculation_dispatcher


def get_batch_orchestrator() -> BatchOrchestrator:
    return batch_orchestrator


def get_archive_analytics_service() -> ArchiveAnalyticsService:
    return archive_analytics_service


def get_revenue_service() -> PipelineRevenueService:
    return pipeline_revenue_service


def get_score_audit_service() -> ScoreAuditService:
    return score_audit_service


def get_ingestion_service() -> CommunicationIngestionService:
    return communication_ingestion_service


def _to_http_error(e: PipelineScoringError) -> HTTPException:
    if isinstance(e, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, TransientStorageError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage unavailable"
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


def _history_item(entry: ScoreHistoryEntry) -> dict:
    return {
        "id": entry.id,
        "score": entry.score,
        "stage": entry.stage,
        "reason": entry.reason,
        "scored_at": entry.scored_at,
        "breakdown": entry.breakdown,
        "weighted_monthly": entry.weighted_monthly,
        "weighted_onetime": entry.weighted_onetime,
    }


def verify_cron_secret(authorization: str | None = Header(None)) -> None:
    """Bearer CRON_SECRET. Open in development when no secret is configured."""
    secret = settings.CRON_SECRET
    if not secret:
        if settings.environment == "development":
            return
        logger.error("CRON_SECRET not configured")
        raise HTTPException(status_code=500, detail="Cron secret not configured")

    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not hmac.compare_digest(authorization.removeprefix("Bearer "), secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/recalculate", response_model=RecalculateResponse)
async def recalculate(
    payload: RecalculateRequest,
    service: RecalculationService = Depends(get_recalculation_service),
):
    """
    Recalculate one or more deals synchronously and return the new scores.

    Raises:
        400: empty ids or reason
        404: single deal not found
        503: storage unavailable for a single deal
    """
    targets = payload.targets()

    if len(targets) == 1:
        try:
            outcome = await service.recalculate(targets[0], payload.reason)
        except PipelineScoringError as e:
            raise _to_http_error(e) from e

        if outcome is None:
            return RecalculateResponse(
                results=[ScoreResponse(recommendation_id=targets[0], status="skipped")]
            )
        return RecalculateResponse(
            results=[
                ScoreResponse(
                    recommendation_id=targets[0], status="succeeded", **_outcome_fields(outcome)
                )
            ]
        )

    results = await map_isolated(
        targets,
        lambda deal_id: service.recalculate(deal_id, payload.reason),
        BatchOptions.from_settings(),
    )
    return RecalculateResponse(
        results=[
            ScoreResponse(
                recommendation_id=result.item,
                status=result.status,
                error=result.error,
                **(_outcome_fields(result.value) if result.value else {}),
            )
            for result in results
        ]
    )


def _outcome_fields(outcome) -> dict:
    return {
        "score": outcome.score,
        "stage": outcome.stage,
        "previous_score": outcome.previous_score,
        "breakdown": outcome.breakdown,
        "weighted_monthly": outcome.weighted_monthly,
        "weighted_onetime": outcome.weighted_onetime,
        "scored_at": outcome.scored_at,
    }


@router.post("/deals/{deal_id}/trigger", status_code=status.HTTP_202_ACCEPTED)
async def trigger(
    deal_id: str,
    payload: TriggerRequest,
    dispatcher: RecalculationDispatcher = Depends(get_recalculation_dispatcher),
):
    """Queue a background recalculation and return immediately."""
    try:
        dispatcher.trigger_recalculation(deal_id, payload.reason)
    except ValidationError as e:
        raise _to_http_error(e) from e
    return {"accepted": True, "recommendation_id": deal_id}


@router.post("/refresh-scores", response_model=BatchStepResponse)
async def refresh_scores(orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator)):
    try:
        result = await orchestrator.refresh_all()
    except PipelineScoringError as e:
        raise _to_http_error(e) from e
    return result.to_dict()


@router.post("/communications", response_model=CommunicationResponse)
async def log_communication(
    payload: CommunicationRequest,
    service: CommunicationIngestionService = Depends(get_ingestion_service),
):
    event = CommunicationEvent(
        deal_id=payload.recommendation_id,
        direction=payload.direction,
        channel=payload.channel or map_external_channel(payload.message_type),
        event_type=payload.event_type,
        contact_at=payload.contact_at,
        source=payload.source,
        external_id=payload.external_id,
        notes=payload.notes,
    )
    try:
        created = await service.ingest(event)
    except PipelineScoringError as e:
        raise _to_http_error(e) from e

    return CommunicationResponse(
        recommendation_id=payload.recommendation_id, created=created, duplicate=not created
    )


@router.get("/archive-analytics", response_model=ArchiveAnalyticsResponse)
async def archive_analytics(
    archived_after: datetime | None = Query(None),
    archived_before: datetime | None = Query(None),
    rep_id: str | None = Query(None, description="Owning representative"),
    service: ArchiveAnalyticsService = Depends(get_archive_analytics_service),
):
    filters = ArchiveAnalyticsFilters(
        archived_after=archived_after, archived_before=archived_before, owner_id=rep_id
    )
    try:
        analytics = await service.get_archive_analytics(filters)
    except PipelineScoringError as e:
        raise _to_http_error(e) from e
    return analytics.to_dict()


@router.get("/revenue-summary", response_model=RevenueSummaryResponse)
async def revenue_summary(
    current_mrr: float = Query(0.0, ge=0, description="MRR from active subscriptions"),
    active_client_count: int = Query(0, ge=0),
    rep_id: str | None = Query(None, description="Owning representative"),
    service: PipelineRevenueService = Depends(get_revenue_service),
):
    try:
        summary = await service.get_revenue_summary(current_mrr, active_client_count, rep_id)
    except PipelineScoringError as e:
        raise _to_http_error(e) from e
    return summary.to_dict()


@router.get("/deals/{deal_id}/score-history", response_model=ScoreHistoryResponse)
async def score_history(
    deal_id: str,
    limit: int = Query(50, ge=1, le=200),
    service: ScoreAuditService = Depends(get_score_audit_service),
):
    try:
        entries = await service.get_history(deal_id, limit)
    except PipelineScoringError as e:
        raise _to_http_error(e) from e
    return ScoreHistoryResponse(
        recommendation_id=deal_id,
        history=[ScoreHistoryItem(**_history_item(entry)) for entry in entries],
    )


@router.get("/deals/{deal_id}/score-audit", response_model=ScoreAuditResponse)
async def score_audit(
    deal_id: str,
    limit: int = Query(50, ge=1, le=200),
    service: ScoreAuditService = Depends(get_score_audit_service),
):
    try:
        trail = await service.get_audit_trail(deal_id, limit)
    except PipelineScoringError as e:
        raise _to_http_error(e) from e

    return ScoreAuditResponse(
        recommendation_id=deal_id,
        audit=[
            ScoreAuditItem(
                **_history_item(item.entry),
                score_delta=item.score_delta,
                weighted_monthly_delta=item.weighted_monthly_delta,
                changes=[
                    {
                        "signal": change.signal,
                        "previous": change.previous,
                        "current": change.current,
                        "delta": change.delta,
                    }
                    for change in item.changes
                ],
            )
            for item in trail
        ],
    )


@cron_router.api_route(
    "/pipeline-scores",
    methods=["GET", "POST"],
    response_model=DailyBatchResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def run_pipeline_scores(orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator)):
    """Daily batch: drain the queue, then sweep stale scores."""
    try:
        report = await asyncio.wait_for(
            orchestrator.run_daily(), timeout=settings.PIPELINE_BATCH_TIMEOUT_SECONDS
        )
    except TimeoutError as e:
        logger.error(
            "Daily pipeline scoring run exceeded budget",
            timeout_seconds=settings.PIPELINE_BATCH_TIMEOUT_SECONDS,
        )
        raise HTTPException(status_code=504, detail="Batch run exceeded time budget") from e
    except PipelineScoringError as e:
        logger.error("Daily pipeline scoring run failed", error=str(e), operation=e.operation)
        raise _to_http_error(e) from e

    return DailyBatchResponse(**report.to_dict())
