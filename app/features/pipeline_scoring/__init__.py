"""
Pipeline scoring feature package.

Keeps every layer of the deal-scoring engine together: domain models,
the pure calculator, repositories, batch services, jobs wiring and the
HTTP routers.
"""

from .domain import CommunicationEvent, Deal, ScoreHistoryEntry  # noqa: F401
from .scoring import ScoreCalculator, ScoringConfig  # noqa: F401
