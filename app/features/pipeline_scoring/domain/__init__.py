"""
Domain subpackage for the pipeline scoring feature.
"""

from .errors import (
    ComputationError,
    NotFound,
    PipelineScoringError,
    TransientStorageError,
    ValidationError,
)
from .models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    ActiveDealFilters,
    ArchiveAnalytics,
    ArchiveAnalyticsFilters,
    AuditEntry,
    BatchStepResult,
    ClosingSoonDeal,
    CommunicationEvent,
    DailyBatchReport,
    Deal,
    ItemError,
    PipelineRevenueSummary,
    QueuedRecalculationRequest,
    ReasonBreakdown,
    RecalculationOutcome,
    RevenueBucket,
    ScoreHistoryEntry,
    ScoreResult,
    SignalChange,
)

__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "ActiveDealFilters",
    "ArchiveAnalytics",
    "ArchiveAnalyticsFilters",
    "AuditEntry",
    "BatchStepResult",
    "ClosingSoonDeal",
    "CommunicationEvent",
    "ComputationError",
    "DailyBatchReport",
    "Deal",
    "ItemError",
    "NotFound",
    "PipelineRevenueSummary",
    "PipelineScoringError",
    "QueuedRecalculationRequest",
    "ReasonBreakdown",
    "RecalculationOutcome",
    "RevenueBucket",
    "ScoreHistoryEntry",
    "ScoreResult",
    "SignalChange",
    "TransientStorageError",
    "ValidationError",
]
