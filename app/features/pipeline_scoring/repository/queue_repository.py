"""
Durable recalculation queue (pipeline_score_events).

Unrelated mutation paths enqueue; the daily queue processor claims and
drains. A claimed row leaves the pending set, so an event arriving while
its deal is being processed queues a fresh request instead of coalescing
into work that has already read the deal.
"""

from collections.abc import Sequence

from app.config import settings
from app.db.helpers import execute_query, fetch_all, fetch_one
from app.features.pipeline_scoring.domain import QueuedRecalculationRequest
from app.infrastructure.observability.logging import get_logger

from .base import storage_operation

logger = get_logger(__name__)

TERMINAL_REQUEST_STATUSES = frozenset({"succeeded", "failed", "skipped"})


class PostgresQueueRepository:
    REQUEST_COLUMNS = (
        "id, recommendation_id, reason, enqueued_at, status, claimed_at, processed_at, error"
    )

    @classmethod
    def _row_to_request(cls, row: dict) -> QueuedRecalculationRequest:
        return QueuedRecalculationRequest(
            id=str(row["id"]),
            deal_id=str(row["recommendation_id"]),
            reason=row["reason"],
            enqueued_at=row["enqueued_at"],
            status=row["status"],
            claimed_at=row.get("claimed_at"),
            processed_at=row.get("processed_at"),
            error=row.get("error"),
        )

    @classmethod
    @storage_operation("enqueue_recalculation")
    async def enqueue(cls, deal_id: str, reason: str) -> bool:
        query = """
            INSERT INTO pipeline_score_events (recommendation_id, reason)
            VALUES (%s, %s)
            ON CONFLICT (recommendation_id) WHERE status = 'pending' DO NOTHING
            RETURNING id
        """
        row = await fetch_one(query, (deal_id, reason))
        if not row:
            logger.debug("Pending recalculation already queued", deal_id=deal_id, reason=reason)
            return False
        return True

    @classmethod
    @storage_operation("dequeue_pending")
    async def dequeue_pending(cls, limit: int) -> list[QueuedRecalculationRequest]:
        """
        Claim up to `limit` requests, oldest first.

        Pending rows and rows whose claim expired (a crashed run) move to
        'processing'. SKIP LOCKED keeps two concurrent runs from claiming
        the same row.
        """
        query = f"""
            UPDATE pipeline_score_events
            SET status = 'processing',
                claimed_at = NOW()
            WHERE id IN (
                SELECT id
                FROM pipeline_score_events
                WHERE status = 'pending'
                   OR (status = 'processing' AND claimed_at < NOW() - make_interval(mins => %s))
                ORDER BY enqueued_at ASC
                LIMIT %s
                FOR UPDATE SKIP LOCKED
            )
            RETURNING {cls.REQUEST_COLUMNS}
        """
        rows = await fetch_all(query, (settings.PIPELINE_QUEUE_CLAIM_TIMEOUT_MINUTES, limit))
        requests = [cls._row_to_request(row) for row in rows]
        requests.sort(key=lambda r: r.enqueued_at)
        return requests

    @classmethod
    @storage_operation("mark_requests")
    async def mark(
        cls, request_ids: Sequence[str], status: str, error: str | None = None
    ) -> None:
        if status not in TERMINAL_REQUEST_STATUSES:
            raise ValueError(f"Cannot mark request as {status!r}")
        if not request_ids:
            return

        query = """
            UPDATE pipeline_score_events
            SET status = %s,
                processed_at = NOW(),
                error = %s
            WHERE id = ANY(%s)
              AND status = 'processing'
        """
        truncated = error[:500] if error else None
        await execute_query(query, (status, truncated, list(request_ids)))
