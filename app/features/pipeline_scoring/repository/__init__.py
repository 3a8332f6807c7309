"""
Persistence layer for pipeline scoring.
"""

from .deal_repository import PostgresDealRepository
from .event_repository import PostgresEventRepository
from .interfaces import (
    DealRepository,
    EventRepository,
    QueueRepository,
    ScoreHistoryRepository,
    ScoringRunRepository,
)
from .queue_repository import PostgresQueueRepository
from .score_history_repository import PostgresScoreHistoryRepository
from .scoring_run_repository import PostgresScoringRunRepository

__all__ = [
    "DealRepository",
    "EventRepository",
    "PostgresDealRepository",
    "PostgresEventRepository",
    "PostgresQueueRepository",
    "PostgresScoreHistoryRepository",
    "PostgresScoringRunRepository",
    "QueueRepository",
    "ScoreHistoryRepository",
    "ScoringRunRepository",
]
