import pytest

from app.features.pipeline_scoring.scoring import (
    DEFAULT_SCORING_CONFIG,
    ScoringConfig,
    StageThreshold,
    load_scoring_config,
)


class TestStageTable:
    @pytest.mark.parametrize(
        "score,stage",
        [
            (100, "thriving"),
            (80, "thriving"),
            (79, "healthy"),
            (60, "healthy"),
            (59, "needs_attention"),
            (40, "needs_attention"),
            (39, "at_risk"),
            (20, "at_risk"),
            (19, "critical"),
            (0, "critical"),
        ],
    )
    def test_default_cutoffs(self, score, stage):
        assert DEFAULT_SCORING_CONFIG.stage_for(score) == stage

    def test_stages_sorted_descending(self):
        config = ScoringConfig(
            stages=(StageThreshold(0, "low"), StageThreshold(50, "high"))
        )
        assert [s.stage for s in config.stages] == ["high", "low"]

    def test_requires_zero_threshold(self):
        with pytest.raises(ValueError):
            ScoringConfig(stages=(StageThreshold(50, "high"),))


class TestOverrides:
    def test_signal_override_keeps_other_fields(self):
        config = DEFAULT_SCORING_CONFIG.with_overrides({"email_not_opened": {"cap": 10}})

        assert config.email_not_opened.cap == 10
        assert config.email_not_opened.grace_hours == 24
        assert config.silence == DEFAULT_SCORING_CONFIG.silence

    def test_stage_list_override(self):
        config = DEFAULT_SCORING_CONFIG.with_overrides(
            {"stages": [{"stage": "good", "min_score": 70}, {"stage": "bad", "min_score": 0}]}
        )
        assert config.stage_for(70) == "good"
        assert config.stage_for(69) == "bad"

    def test_defaults_unchanged(self):
        DEFAULT_SCORING_CONFIG.with_overrides({"base_score": 90})
        assert DEFAULT_SCORING_CONFIG.base_score == 100.0


class TestLoadScoringConfig:
    def test_defaults_without_override(self, monkeypatch):
        monkeypatch.setattr(
            "app.features.pipeline_scoring.scoring.config.settings.PIPELINE_SCORING_CONFIG_JSON",
            None,
        )
        assert load_scoring_config() is DEFAULT_SCORING_CONFIG

    def test_json_override(self, monkeypatch):
        monkeypatch.setattr(
            "app.features.pipeline_scoring.scoring.config.settings.PIPELINE_SCORING_CONFIG_JSON",
            '{"silence": {"grace_hours": 48}, "followup_acceleration_threshold": 2}',
        )
        config = load_scoring_config()

        assert config.silence.grace_hours == 48
        assert config.followup_acceleration_threshold == 2

    def test_invalid_json(self, monkeypatch):
        monkeypatch.setattr(
            "app.features.pipeline_scoring.scoring.config.settings.PIPELINE_SCORING_CONFIG_JSON",
            "{not json",
        )
        with pytest.raises(ValueError):
            load_scoring_config()

    def test_unknown_signal_key_is_named(self, monkeypatch):
        monkeypatch.setattr(
            "app.features.pipeline_scoring.scoring.config.settings.PIPELINE_SCORING_CONFIG_JSON",
            '{"silence": {"grace": 48}}',
        )
        with pytest.raises(ValueError, match="grace"):
            load_scoring_config()

    def test_unknown_top_level_key_is_named(self, monkeypatch):
        monkeypatch.setattr(
            "app.features.pipeline_scoring.scoring.config.settings.PIPELINE_SCORING_CONFIG_JSON",
            '{"silense": {"cap": 10}}',
        )
        with pytest.raises(ValueError, match="silense"):
            load_scoring_config()

    def test_malformed_stage_entry(self):
        with pytest.raises(ValueError):
            DEFAULT_SCORING_CONFIG.with_overrides({"stages": [{"stage": "good"}]})
