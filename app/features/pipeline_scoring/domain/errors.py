"""
Error taxonomy for pipeline scoring.

Batch callers treat NotFound as a skip and every other subclass as a
per-item failure. ValidationError is raised straight back to whoever
called the trigger.
"""


class PipelineScoringError(Exception):
    """Base exception for pipeline scoring operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class NotFound(PipelineScoringError):
    """Referenced deal no longer exists."""

    def __init__(self, deal_id: str, operation: str = "get_deal"):
        super().__init__(f"Deal not found: {deal_id}", operation=operation, recoverable=False)
        self.deal_id = deal_id


class TransientStorageError(PipelineScoringError):
    """Underlying storage read or write failed."""


class ValidationError(PipelineScoringError):
    """Malformed input to a trigger or ingestion entrypoint."""

    def __init__(self, message: str, operation: str = "validate"):
        super().__init__(message, operation=operation, recoverable=False)


class ComputationError(PipelineScoringError):
    """Event data the calculator cannot interpret (corrupt rows)."""

    def __init__(self, message: str, operation: str = "compute_score"):
        super().__init__(message, operation=operation, recoverable=False)
