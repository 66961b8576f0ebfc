"""Tunable analysis thresholds."""

from dataclasses import dataclass

from .constants import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_ESCALATION_CONFIDENCE_THRESHOLD,
    DEFAULT_LOOKBACK_DAYS,
    DEFAULT_MIN_OCCURRENCES,
    REPLY_WINDOW_SECONDS,
)


@dataclass(frozen=True)
class AnalyticsConfig:
    """Configurable thresholds for analysis.

    ``confidence_threshold`` is the one place "low confidence" is defined; every
    analyzer reads it from here instead of hard-coding its own cut-off.
    """

    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    escalation_confidence_threshold: float = DEFAULT_ESCALATION_CONFIDENCE_THRESHOLD
    min_occurrences: int = DEFAULT_MIN_OCCURRENCES
    reply_window_seconds: int = REPLY_WINDOW_SECONDS
    lookback_days: int = DEFAULT_LOOKBACK_DAYS

    def __post_init__(self) -> None:
        for name in ("confidence_threshold", "escalation_confidence_threshold"):
            value = getattr(self, name)
            if not 0 <= value <= 1:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")
        if self.min_occurrences < 1:
            raise ValueError("min_occurrences must be at least 1")
        if self.reply_window_seconds <= 0:
            raise ValueError("reply_window_seconds must be positive")
