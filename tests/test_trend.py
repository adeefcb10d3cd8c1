from __future__ import annotations

import pytest

from latency_checks.trend import Trend, classify, percent_change


@pytest.mark.parametrize(
    ("current", "baseline", "count", "expected"),
    [
        (150, 100, 5, Trend.DEGRADED),
        (149, 100, 5, Trend.STEADY),
        (40, 100, 5, Trend.IMPROVED),
        (50, 100, 5, Trend.IMPROVED),
        (51, 100, 5, Trend.STEADY),
        (100, 100, 5, Trend.STEADY),
        (100, 100, 2, Trend.BASELINE),
        (100, 0, 5, Trend.BASELINE),
        (0, 0, 0, Trend.BASELINE),
        (160_000_000, 100_000_000, 3, Trend.DEGRADED),
    ],
)
def test_classify(current: int, baseline: int, count: int, expected: Trend) -> None:
    assert classify(current, baseline, count) is expected


def test_percent_change() -> None:
    assert percent_change(150, 100) == pytest.approx(50.0)
    assert percent_change(25, 100) == pytest.approx(-75.0)
    assert percent_change(10, 0) is None


def test_trend_symbols() -> None:
    assert Trend.DEGRADED.symbol == "↑"
    assert Trend.IMPROVED.symbol == "↓"
    assert Trend.STEADY.symbol == "→"
    assert Trend.BASELINE.symbol == "●"
