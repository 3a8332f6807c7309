"""
Postgres storage for communication events.

Rows are insert-only. Webhook deliveries carry an external id and a
partial unique index makes re-delivery a no-op.
"""

from app.db.helpers import fetch_all, fetch_one
from app.features.pipeline_scoring.domain import CommunicationEvent
from app.infrastructure.observability.logging import get_logger

from .base import storage_operation

logger = get_logger(__name__)


class PostgresEventRepository:
    EVENT_SELECT_COLUMNS = """
        id, recommendation_id, direction, channel, event_type,
        contact_at, source, external_id, notes
    """

    @classmethod
    def _row_to_event(cls, row: dict) -> CommunicationEvent:
        return CommunicationEvent(
            id=str(row["id"]),
            deal_id=str(row["recommendation_id"]),
            direction=row["direction"],
            channel=row["channel"],
            event_type=row["event_type"],
            contact_at=row["contact_at"],
            source=row["source"],
            external_id=row.get("external_id"),
            notes=row.get("notes"),
        )

    @classmethod
    @storage_operation("append_event")
    async def append(cls, event: CommunicationEvent) -> bool:
        query = """
            INSERT INTO recommendation_communications (
                recommendation_id, direction, channel, event_type,
                contact_at, source, external_id, notes
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (external_id) WHERE external_id IS NOT NULL DO NOTHING
            RETURNING id
        """
        row = await fetch_one(
            query,
            (
                event.deal_id,
                event.direction,
                event.channel,
                event.event_type,
                event.contact_at,
                event.source,
                event.external_id,
                event.notes,
            ),
        )
        if not row:
            logger.info(
                "Duplicate communication ignored",
                deal_id=event.deal_id,
                external_id=event.external_id,
            )
            return False

        event.id = str(row["id"])
        return True

    @classmethod
    @storage_operation("list_events")
    async def list_for_deal(cls, deal_id: str) -> list[CommunicationEvent]:
        query = f"""
            SELECT {cls.EVENT_SELECT_COLUMNS}
            FROM recommendation_communications
            WHERE recommendation_id = %s
            ORDER BY contact_at ASC, created_at ASC
        """
        rows = await fetch_all(query, (deal_id,))
        return [cls._row_to_event(row) for row in rows]
