"""Tests for Settings defaults, ConfidenceTier and PipelineConfig."""

from __future__ import annotations

import pytest

from src.config import Settings
from src.pipeline_config import ConfidenceTier, PipelineConfig

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NOTIFIER_URL", raising=False)
        monkeypatch.delenv("PENDING_OFFER_TTL_SECONDS", raising=False)
        monkeypatch.delenv("MAX_PROGRESS_MESSAGES", raising=False)

        cfg = Settings(_env_file=None)  # type: ignore[call-arg]

        assert cfg.pending_offer_ttl_seconds == 300
        assert cfg.max_progress_messages == 4
        assert cfg.notifier_url == ""

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SHORT_REPLY_WORD_LIMIT", "3")
        monkeypatch.setenv("PROGRESS_DELAY_SECONDS", "2.5")

        cfg = Settings(_env_file=None)  # type: ignore[call-arg]

        assert cfg.short_reply_word_limit == 3
        assert cfg.progress_delay_seconds == 2.5


# ---------------------------------------------------------------------------
# ConfidenceTier
# ---------------------------------------------------------------------------


class TestConfidenceTier:
    def test_values(self) -> None:
        assert ConfidenceTier.PRIMARY.value == "primary"
        assert ConfidenceTier.SECONDARY.value == "secondary"

    def test_invalid_raises(self) -> None:
        with pytest.raises(ValueError):
            ConfidenceTier("tertiary")

    def test_is_str_subclass(self) -> None:
        """Enum values behave as plain strings for JSON serialization."""
        assert isinstance(ConfidenceTier.PRIMARY, str)


# ---------------------------------------------------------------------------
# PipelineConfig
# ---------------------------------------------------------------------------


class TestPipelineConfig:
    def test_defaults(self) -> None:
        cfg = PipelineConfig()
        assert cfg.primary_threshold == 0.85
        assert cfg.secondary_threshold == 0.70
        assert cfg.resolution_window_turns == 10

    @pytest.mark.parametrize(
        ("confidence", "tier"),
        [
            (0.99, ConfidenceTier.PRIMARY),
            (0.85, ConfidenceTier.PRIMARY),
            (0.84, ConfidenceTier.SECONDARY),
            (0.70, ConfidenceTier.SECONDARY),
            (0.69, ConfidenceTier.DISCARDED),
        ],
    )
    def test_tier_boundaries(self, confidence: float, tier: ConfidenceTier) -> None:
        assert PipelineConfig().tier_for(confidence) is tier

    def test_custom_thresholds(self) -> None:
        cfg = PipelineConfig(primary_threshold=0.9, secondary_threshold=0.5)
        assert cfg.tier_for(0.88) is ConfidenceTier.SECONDARY
        assert cfg.tier_for(0.5) is ConfidenceTier.SECONDARY

    def test_immutable(self) -> None:
        cfg = PipelineConfig()
        with pytest.raises(AttributeError):
            cfg.primary_threshold = 0.5  # type: ignore[misc]
