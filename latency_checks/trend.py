from __future__ import annotations

from enum import Enum


# Not configurable from YAML.
DEGRADED_THRESHOLD_PERCENT = 50.0
IMPROVED_THRESHOLD_PERCENT = -50.0
MIN_BASELINE_SAMPLES = 3


class Trend(str, Enum):
    BASELINE = "BASELINE"
    STEADY = "STEADY"
    DEGRADED = "DEGRADED"
    IMPROVED = "IMPROVED"

    @property
    def symbol(self) -> str:
        return _SYMBOLS[self]


_SYMBOLS = {
    Trend.BASELINE: "●",
    Trend.STEADY: "→",
    Trend.DEGRADED: "↑",
    Trend.IMPROVED: "↓",
}


def percent_change(current: float, reference: float) -> float | None:
    if not reference:
        return None
    return (float(current) - float(reference)) / float(reference) * 100.0


def classify(current: float, baseline: float, sample_count: int) -> Trend:
    """
    Classify the newest measurement against the rolling baseline.

    A zero baseline is treated as "no usable baseline" even with enough samples.
    """
    if int(sample_count) < MIN_BASELINE_SAMPLES:
        return Trend.BASELINE

    delta = percent_change(current, baseline)
    if delta is None:
        return Trend.BASELINE

    if delta >= DEGRADED_THRESHOLD_PERCENT:
        return Trend.DEGRADED
    if delta <= IMPROVED_THRESHOLD_PERCENT:
        return Trend.IMPROVED
    return Trend.STEADY
