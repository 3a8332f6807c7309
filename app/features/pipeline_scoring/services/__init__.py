"""
Pipeline scoring services: trigger, queue processor, sweeper, orchestrator,
analytics, revenue summary, audit and ingestion.
"""

from .analytics_service import ArchiveAnalyticsService, archive_analytics_service
from .audit_service import ScoreAuditService, score_audit_service
from .batch import BatchOptions, ItemResult, map_isolated
from .batch_orchestrator import BatchOrchestrator, batch_orchestrator
from .ingestion_service import (
    CommunicationIngestionService,
    communication_ingestion_service,
    map_external_channel,
)
from .queue_processor import QueueProcessor, queue_processor
from .recalculation_service import (
    RecalculationDispatcher,
    RecalculationService,
    recalculation_dispatcher,
    recalculation_service,
    trigger_recalculation,
)
from .revenue_service import PipelineRevenueService, pipeline_revenue_service
from .stale_sweeper import StaleScoreSweeper, stale_score_sweeper

__all__ = [
    "ArchiveAnalyticsService",
    "BatchOptions",
    "BatchOrchestrator",
    "CommunicationIngestionService",
    "ItemResult",
    "PipelineRevenueService",
    "QueueProcessor",
    "RecalculationDispatcher",
    "RecalculationService",
    "ScoreAuditService",
    "StaleScoreSweeper",
    "archive_analytics_service",
    "batch_orchestrator",
    "communication_ingestion_service",
    "map_external_channel",
    "map_isolated",
    "pipeline_revenue_service",
    "queue_processor",
    "recalculation_dispatcher",
    "recalculation_service",
    "score_audit_service",
    "stale_score_sweeper",
    "trigger_recalculation",
]
