"""
Scoring configuration.

Every decay rate, grace period and stage cutoff lives here so the
calculator can be exercised with overridden values in tests. Production
values can be overridden with PIPELINE_SCORING_CONFIG_JSON.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, replace
from typing import Any

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SignalConfig:
    grace_hours: float
    daily_rate: float
    cap: float

    def __post_init__(self) -> None:
        if self.grace_hours < 0 or self.daily_rate < 0 or self.cap < 0:
            raise ValueError("Signal parameters must be non-negative")


@dataclass(frozen=True, slots=True)
class StageThreshold:
    min_score: int
    stage: str


DEFAULT_STAGES: tuple[StageThreshold, ...] = (
    StageThreshold(80, "thriving"),
    StageThreshold(60, "healthy"),
    StageThreshold(40, "needs_attention"),
    StageThreshold(20, "at_risk"),
    StageThreshold(0, "critical"),
)


@dataclass(frozen=True, slots=True)
class ScoringConfig:
    base_score: float = 100.0
    silence: SignalConfig = field(
        default_factory=lambda: SignalConfig(grace_hours=120, daily_rate=3.0, cap=80)
    )
    email_not_opened: SignalConfig = field(
        default_factory=lambda: SignalConfig(grace_hours=24, daily_rate=2.5, cap=35)
    )
    proposal_not_viewed: SignalConfig = field(
        default_factory=lambda: SignalConfig(grace_hours=48, daily_rate=2.0, cap=25)
    )
    stages: tuple[StageThreshold, ...] = DEFAULT_STAGES
    # Outbound follow-ups without a reply before silence decays faster. None disables.
    followup_acceleration_threshold: int | None = None
    followup_acceleration_multiplier: float = 1.5

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.stages, key=lambda s: s.min_score, reverse=True))
        if not ordered or ordered[-1].min_score > 0:
            raise ValueError("Stage table must include a threshold at score 0")
        object.__setattr__(self, "stages", ordered)

    def stage_for(self, score: int) -> str:
        for threshold in self.stages:
            if score >= threshold.min_score:
                return threshold.stage
        return self.stages[-1].stage

    def with_overrides(self, overrides: dict[str, Any]) -> ScoringConfig:
        """
        Return a copy with values from a plain dict (e.g. parsed JSON).

        Raises:
            ValueError: unknown key or malformed value
        """
        unknown = set(overrides) - OVERRIDE_KEYS
        if unknown:
            raise ValueError(f"Unknown scoring config keys: {', '.join(sorted(unknown))}")

        changes: dict[str, Any] = {}
        for name in SIGNAL_NAMES:
            if name in overrides:
                values = overrides[name]
                if not isinstance(values, dict):
                    raise ValueError(f"{name} override must be an object")
                bad = set(values) - SIGNAL_FIELDS
                if bad:
                    raise ValueError(f"Unknown {name} keys: {', '.join(sorted(bad))}")
                current: SignalConfig = getattr(self, name)
                changes[name] = replace(current, **values)
        if "stages" in overrides:
            raw = overrides["stages"]
            if isinstance(raw, dict):
                raw = [{"stage": stage, "min_score": score} for stage, score in raw.items()]
            try:
                changes["stages"] = tuple(
                    StageThreshold(int(item["min_score"]), str(item["stage"])) for item in raw
                )
            except (KeyError, TypeError) as e:
                raise ValueError(f"Malformed stages override: {e}") from e
        for name in (
            "base_score",
            "followup_acceleration_threshold",
            "followup_acceleration_multiplier",
        ):
            if name in overrides:
                changes[name] = overrides[name]
        return replace(self, **changes)


DEFAULT_SCORING_CONFIG = ScoringConfig()

SIGNAL_NAMES = ("silence", "email_not_opened", "proposal_not_viewed")
SIGNAL_FIELDS = frozenset(f.name for f in fields(SignalConfig))
OVERRIDE_KEYS = frozenset(
    {
        *SIGNAL_NAMES,
        "stages",
        "base_score",
        "followup_acceleration_threshold",
        "followup_acceleration_multiplier",
    }
)


def load_scoring_config() -> ScoringConfig:
    """Build the scoring config from settings, falling back to defaults."""
    raw = settings.PIPELINE_SCORING_CONFIG_JSON
    if not raw:
        return DEFAULT_SCORING_CONFIG

    try:
        overrides = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"PIPELINE_SCORING_CONFIG_JSON is not valid JSON: {e}") from e
    if not isinstance(overrides, dict):
        raise ValueError("PIPELINE_SCORING_CONFIG_JSON must be a JSON object")

    config = DEFAULT_SCORING_CONFIG.with_overrides(overrides)
    logger.info(
        "Scoring config overrides applied",
        keys=sorted(overrides.keys()),
        stages=[s.stage for s in config.stages],
    )
    return config
