"""
Communication ingestion.

Appends a communication event (idempotent on external_id), queues a
durable recalculation and kicks off a fire-and-forget one. The ingest
itself never waits on scoring and is never undone by a scoring failure.
"""

from __future__ import annotations

from datetime import datetime

from app.features.pipeline_scoring.domain import (
    CommunicationEvent,
    NotFound,
    PipelineScoringError,
    ValidationError,
)
from app.features.pipeline_scoring.domain.models import CHANNELS, DIRECTIONS, EVENT_TYPES
from app.features.pipeline_scoring.repository import (
    DealRepository,
    EventRepository,
    PostgresDealRepository,
    PostgresEventRepository,
    PostgresQueueRepository,
    QueueRepository,
)
from app.infrastructure.observability.logging import get_logger

from .recalculation_service import RecalculationDispatcher, recalculation_dispatcher

logger = get_logger(__name__)

# Message types as reported by the CRM webhook
EXTERNAL_CHANNEL_MAP = {
    "EMAIL": "email",
    "SMS": "sms",
    "WHATSAPP": "sms",
    "CALL": "call",
    "VOICEMAIL": "call",
    "FB": "chat",
    "IG": "chat",
    "GMB": "chat",
    "LIVE_CHAT": "chat",
    "WEBCHAT": "chat",
}


def map_external_channel(message_type: str | None) -> str:
    """Map a CRM message type (TYPE_SMS, EMAIL, ...) onto our channel set."""
    if not message_type:
        return "other"
    key = message_type.upper().removeprefix("TYPE_")
    return EXTERNAL_CHANNEL_MAP.get(key, "other")


def recalculation_reason(event: CommunicationEvent) -> str:
    if event.event_type == "message":
        return f"communication_{event.direction}"
    return event.event_type


def validate_event(event: CommunicationEvent) -> None:
    if not event.deal_id or not str(event.deal_id).strip():
        raise ValidationError("deal_id is required", operation="ingest_communication")
    if event.direction not in DIRECTIONS:
        raise ValidationError(
            f"Invalid direction: {event.direction!r}", operation="ingest_communication"
        )
    if event.channel not in CHANNELS:
        raise ValidationError(
            f"Invalid channel: {event.channel!r}", operation="ingest_communication"
        )
    if event.event_type not in EVENT_TYPES:
        raise ValidationError(
            f"Invalid event type: {event.event_type!r}", operation="ingest_communication"
        )
    if not isinstance(event.contact_at, datetime) or event.contact_at.tzinfo is None:
        raise ValidationError(
            "contact_at must be a timezone-aware timestamp", operation="ingest_communication"
        )


class CommunicationIngestionService:
    def __init__(
        self,
        deals: DealRepository | None = None,
        events: EventRepository | None = None,
        queue: QueueRepository | None = None,
        dispatcher: RecalculationDispatcher | None = None,
    ):
        self.deals = deals or PostgresDealRepository()
        self.events = events or PostgresEventRepository()
        self.queue = queue or PostgresQueueRepository()
        self.dispatcher = dispatcher or recalculation_dispatcher

    async def ingest(self, event: CommunicationEvent) -> bool:
        """
        Store one communication event.

        Returns:
            True if a new row was written, False for a duplicate delivery

        Raises:
            ValidationError: malformed event
            NotFound: the deal does not exist
            TransientStorageError: the event could not be stored
        """
        validate_event(event)
        if await self.deals.get(event.deal_id) is None:
            raise NotFound(event.deal_id, operation="ingest_communication")

        inserted = await self.events.append(event)
        if not inserted:
            return False

        reason = recalculation_reason(event)
        logger.info(
            "Communication ingested",
            deal_id=event.deal_id,
            direction=event.direction,
            channel=event.channel,
            event_type=event.event_type,
            source=event.source,
        )

        try:
            await self.queue.enqueue(event.deal_id, reason)
        except PipelineScoringError as e:
            # The stale sweep still picks the deal up within a day
            logger.error(
                "Failed to queue recalculation after ingest",
                deal_id=event.deal_id,
                reason=reason,
                error=str(e),
            )

        self.dispatcher.trigger_recalculation(event.deal_id, reason)
        return True


communication_ingestion_service = CommunicationIngestionService()
