"""
Pipeline revenue summary: open deals bucketed by score for MRR projection.

Read-only. Buckets, checked in order:
- on_hold: snoozed with a resume date still in the future
- closing_soon: score >= 70 and at least 14 days since sent (or revived)
- in_pipeline: score >= 30
- at_risk: everything else, including deals never scored

Only closing_soon and in_pipeline count toward projected MRR.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import UTC, datetime

from app.features.pipeline_scoring.domain import (
    ClosingSoonDeal,
    Deal,
    PipelineRevenueSummary,
    RevenueBucket,
    ValidationError,
)
from app.features.pipeline_scoring.repository import DealRepository, PostgresDealRepository
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CLOSING_SOON_MIN_SCORE = 70
CLOSING_SOON_MIN_AGE_DAYS = 14
IN_PIPELINE_MIN_SCORE = 30
CLOSING_SOON_TABLE_LIMIT = 10


def _whole(value: float) -> int:
    return int(math.floor(value + 0.5))


def deal_age_days(deal: Deal, now: datetime) -> int:
    """Whole days since revival, else since sent; 0 when neither is set."""
    anchor = deal.revived_at or deal.sent_at
    if anchor is None:
        return 0
    return max(0, (now - anchor).days)


class _Accumulator:
    def __init__(self) -> None:
        self.weighted = 0.0
        self.raw = 0.0
        self.count = 0
        self.confidence = 0

    def add(self, deal: Deal, confidence: int) -> None:
        self.weighted += deal.weighted_monthly
        self.raw += deal.predicted_monthly
        self.count += 1
        self.confidence += confidence

    def bucket(self, with_confidence: bool = True) -> RevenueBucket:
        avg = _whole(self.confidence / self.count) if self.count else 0
        return RevenueBucket(
            weighted_mrr=_whole(self.weighted),
            raw_mrr=_whole(self.raw),
            deal_count=self.count,
            avg_confidence=avg if with_confidence else None,
        )


class PipelineRevenueService:
    def __init__(
        self,
        deals: DealRepository | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.deals = deals or PostgresDealRepository()
        self.clock = clock or (lambda: datetime.now(UTC))

    async def get_revenue_summary(
        self,
        current_mrr: float = 0.0,
        active_client_count: int = 0,
        owner_id: str | None = None,
    ) -> PipelineRevenueSummary:
        """
        Raises:
            ValidationError: negative current_mrr or client count
            TransientStorageError: deals could not be read
        """
        if current_mrr < 0 or active_client_count < 0:
            raise ValidationError(
                "current_mrr and active_client_count must not be negative",
                operation="revenue_summary",
            )

        now = self.clock()
        deals = await self.deals.list_revenue_deals(owner_id)

        closing_soon = _Accumulator()
        in_pipeline = _Accumulator()
        at_risk = _Accumulator()
        on_hold = _Accumulator()
        closing_soon_deals: list[ClosingSoonDeal] = []
        last_updated: datetime | None = None

        for deal in deals:
            if deal.last_scored_at and (last_updated is None or deal.last_scored_at > last_updated):
                last_updated = deal.last_scored_at

            confidence = deal.current_score or 0
            age_days = deal_age_days(deal, now)

            if deal.snoozed_until and deal.snoozed_until > now:
                on_hold.add(deal, confidence)
            elif confidence >= CLOSING_SOON_MIN_SCORE and age_days >= CLOSING_SOON_MIN_AGE_DAYS:
                closing_soon.add(deal, confidence)
                if len(closing_soon_deals) < CLOSING_SOON_TABLE_LIMIT:
                    closing_soon_deals.append(
                        ClosingSoonDeal(
                            deal_id=deal.id,
                            owner_id=deal.owner_id,
                            predicted_monthly=deal.predicted_monthly,
                            confidence_score=confidence,
                            weighted_monthly=deal.weighted_monthly,
                            age_days=age_days,
                        )
                    )
            elif confidence >= IN_PIPELINE_MIN_SCORE:
                in_pipeline.add(deal, confidence)
            else:
                at_risk.add(deal, confidence)

        closing_bucket = closing_soon.bucket()
        pipeline_bucket = in_pipeline.bucket()
        projected = current_mrr + closing_bucket.weighted_mrr + pipeline_bucket.weighted_mrr

        summary = PipelineRevenueSummary(
            current_mrr=current_mrr,
            active_client_count=active_client_count,
            closing_soon=closing_bucket,
            in_pipeline=pipeline_bucket,
            at_risk=at_risk.bucket(),
            on_hold=on_hold.bucket(with_confidence=False),
            projected_mrr=_whole(projected),
            potential_growth=_whole(projected - current_mrr),
            last_updated=last_updated,
            closing_soon_deals=closing_soon_deals,
        )

        logger.info(
            "Pipeline revenue summary computed",
            deal_count=len(deals),
            projected_mrr=summary.projected_mrr,
            owner_id=owner_id,
        )
        return summary


pipeline_revenue_service = PipelineRevenueService()
