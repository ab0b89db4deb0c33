"""Pipeline configuration: confidence tiers and the PipelineConfig dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ConfidenceTier(str, Enum):
    """Buckets an extracted action item can land in."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    DISCARDED = "discarded"


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable thresholds for resolution and extraction.

    Defaults mirror the production behaviour: primary items need 0.85,
    secondary items 0.70, and anything lower is dropped.
    """

    primary_threshold: float = 0.85
    secondary_threshold: float = 0.70
    resolution_window_turns: int = 10
    last_week_days: int = 7
    last_month_days: int = 30

    def tier_for(self, confidence: float) -> ConfidenceTier:
        """Return the tier an item with *confidence* belongs to."""
        if confidence >= self.primary_threshold:
            return ConfidenceTier.PRIMARY
        if confidence >= self.secondary_threshold:
            return ConfidenceTier.SECONDARY
        return ConfidenceTier.DISCARDED
