"""
Deal scoring package.

Pure decay functions, the score calculator and its configuration.
"""

from .calculator import SIGNALS, ScoreCalculator, extract_anchors
from .config import (
    DEFAULT_SCORING_CONFIG,
    ScoringConfig,
    SignalConfig,
    StageThreshold,
    load_scoring_config,
)

__all__ = [
    "DEFAULT_SCORING_CONFIG",
    "SIGNALS",
    "ScoreCalculator",
    "ScoringConfig",
    "SignalConfig",
    "StageThreshold",
    "extract_anchors",
    "load_scoring_config",
]
