"""
Deal score calculator.

Combines the per-signal decay penalties into a single 0-100 health score,
a stage label and a breakdown of what each applicable signal cost. Pure:
identical deal, events and ``now`` always produce an identical result.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from app.features.pipeline_scoring.domain import (
    CommunicationEvent,
    ComputationError,
    Deal,
    ScoreResult,
)

from . import decay
from .config import DEFAULT_SCORING_CONFIG, ScoringConfig

SILENCE = "silence"
EMAIL_NOT_OPENED = "email_not_opened"
PROPOSAL_NOT_VIEWED = "proposal_not_viewed"

SIGNALS = (SILENCE, EMAIL_NOT_OPENED, PROPOSAL_NOT_VIEWED)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def round2(value: float) -> float:
    return math.floor(value * 100 + 0.5) / 100


@dataclass(slots=True)
class SignalAnchors:
    """Most recent relevant timestamps extracted from a deal's events."""

    last_inbound_at: datetime | None = None
    last_outbound_email_at: datetime | None = None
    last_email_opened_at: datetime | None = None
    last_proposal_sent_at: datetime | None = None
    last_proposal_viewed_at: datetime | None = None
    followups_since_reply: int = 0

    @property
    def email_engaged_at(self) -> datetime | None:
        candidates = [t for t in (self.last_email_opened_at, self.last_inbound_at) if t]
        return max(candidates) if candidates else None


def _latest(current: datetime | None, candidate: datetime) -> datetime:
    return candidate if current is None or candidate > current else current


def extract_anchors(events: Iterable[CommunicationEvent]) -> SignalAnchors:
    anchors = SignalAnchors()
    outbound_messages: list[datetime] = []

    for event in events:
        contact_at = event.contact_at
        if not isinstance(contact_at, datetime) or contact_at.tzinfo is None:
            raise ComputationError(
                f"Event {event.id or event.external_id or '?'} has an invalid contact_at: "
                f"{contact_at!r}"
            )

        if event.event_type == "message":
            if event.direction == "inbound":
                anchors.last_inbound_at = _latest(anchors.last_inbound_at, contact_at)
            else:
                outbound_messages.append(contact_at)
                if event.channel == "email":
                    anchors.last_outbound_email_at = _latest(
                        anchors.last_outbound_email_at, contact_at
                    )
        elif event.event_type == "email_opened":
            anchors.last_email_opened_at = _latest(anchors.last_email_opened_at, contact_at)
        elif event.event_type == "proposal_sent":
            anchors.last_proposal_sent_at = _latest(anchors.last_proposal_sent_at, contact_at)
        elif event.event_type == "proposal_viewed":
            anchors.last_proposal_viewed_at = _latest(anchors.last_proposal_viewed_at, contact_at)
        else:
            raise ComputationError(f"Unknown event type: {event.event_type!r}")

    last_reply = anchors.last_inbound_at
    anchors.followups_since_reply = sum(
        1 for sent in outbound_messages if last_reply is None or sent > last_reply
    )
    return anchors


class ScoreCalculator:
    """Stateless apart from the injected configuration."""

    def __init__(self, config: ScoringConfig | None = None):
        self.config = config or DEFAULT_SCORING_CONFIG

    def compute(
        self, deal: Deal, events: Iterable[CommunicationEvent], now: datetime
    ) -> ScoreResult:
        if now.tzinfo is None:
            raise ComputationError("Evaluation time must be timezone-aware")

        config = self.config
        anchors = extract_anchors(events)
        baseline = self._baseline(deal)

        silence_multiplier = 1.0
        threshold = config.followup_acceleration_threshold
        if threshold is not None and anchors.followups_since_reply >= threshold:
            silence_multiplier = config.followup_acceleration_multiplier

        penalties: dict[str, float | None] = {
            SILENCE: decay.silence_penalty(
                anchors.last_inbound_at,
                deal.sent_at,
                now,
                config.silence,
                baseline=baseline,
                rate_multiplier=silence_multiplier,
            ),
            EMAIL_NOT_OPENED: decay.email_not_opened_penalty(
                anchors.last_outbound_email_at,
                anchors.email_engaged_at,
                now,
                config.email_not_opened,
                baseline=baseline,
            ),
            PROPOSAL_NOT_VIEWED: decay.proposal_not_viewed_penalty(
                anchors.last_proposal_sent_at,
                anchors.last_proposal_viewed_at,
                now,
                config.proposal_not_viewed,
                baseline=baseline,
            ),
        }

        applicable = {name: value for name, value in penalties.items() if value is not None}
        total_penalties = sum(applicable.values())

        raw_score = min(100.0, max(0.0, config.base_score - total_penalties))
        score = round_half_up(raw_score)

        return ScoreResult(
            score=score,
            stage=config.stage_for(score),
            breakdown={name: round2(value) for name, value in applicable.items()},
            base_score=config.base_score,
            total_penalties=round2(total_penalties),
            weighted_monthly=round2((deal.predicted_monthly or 0) * score / 100),
            weighted_onetime=round2((deal.predicted_onetime or 0) * score / 100),
        )

    @staticmethod
    def _baseline(deal: Deal) -> datetime | None:
        candidates = [t for t in (deal.revived_at, deal.snoozed_until) if t is not None]
        return max(candidates) if candidates else None

