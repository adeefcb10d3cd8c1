from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

from latency_checks.models import Measurement, ns_to_ms, parse_service_key
from latency_checks.trend import DEGRADED_THRESHOLD_PERCENT, IMPROVED_THRESHOLD_PERCENT, percent_change


@dataclass(frozen=True)
class ServiceStats:
    name: str
    location: str
    provider: str
    test_type: str
    count: int
    min_ms: int
    avg_ms: int
    max_ms: int
    std_dev_ms: float
    first_ms: int
    last_ms: int
    trend_percent: float
    status: str
    first_time: datetime
    last_time: datetime


@dataclass(frozen=True)
class HistorySummary:
    fastest: ServiceStats | None
    slowest: ServiceStats | None
    most_improved: ServiceStats | None
    most_degraded: ServiceStats | None
    period_start: datetime | None
    period_end: datetime | None


def trend_status(trend_percent: float) -> str:
    # Offline reports use strict bounds; exactly +/-50% stays STEADY.
    if trend_percent > DEGRADED_THRESHOLD_PERCENT:
        return "DEGRADED"
    if trend_percent < IMPROVED_THRESHOLD_PERCENT:
        return "IMPROVED"
    return "STEADY"


def _service_stats(name: str, points: list[Measurement]) -> ServiceStats:
    values = [ns_to_ms(p.elapsed_ns) for p in points]
    avg_ms = sum(values) // len(values)
    variance = sum((v - avg_ms) ** 2 for v in values) / len(values)
    first_ms = values[0]
    last_ms = values[-1]
    trend = percent_change(last_ms, first_ms) or 0.0
    location, provider, test_type = parse_service_key(name)
    return ServiceStats(
        name=name,
        location=location,
        provider=provider,
        test_type=test_type,
        count=len(values),
        min_ms=min(values),
        avg_ms=avg_ms,
        max_ms=max(values),
        std_dev_ms=math.sqrt(variance),
        first_ms=first_ms,
        last_ms=last_ms,
        trend_percent=trend,
        status=trend_status(trend),
        first_time=points[0].timestamp,
        last_time=points[-1].timestamp,
    )


def compute_service_stats(history: dict[str, list[Measurement]]) -> list[ServiceStats]:
    stats = [_service_stats(name, points) for name, points in history.items() if points]
    stats.sort(key=lambda s: s.name)
    return stats


def summarize(stats: list[ServiceStats]) -> HistorySummary:
    if not stats:
        return HistorySummary(None, None, None, None, None, None)
    return HistorySummary(
        fastest=min(stats, key=lambda s: s.avg_ms),
        slowest=max(stats, key=lambda s: s.avg_ms),
        most_improved=min(stats, key=lambda s: s.trend_percent),
        most_degraded=max(stats, key=lambda s: s.trend_percent),
        period_start=min(s.first_time for s in stats),
        period_end=max(s.last_time for s in stats),
    )


def _trend_arrow(trend_percent: float) -> str:
    status = trend_status(trend_percent)
    if status == "DEGRADED":
        return "↑"
    if status == "IMPROVED":
        return "↓"
    return "→"


def render_analysis(stats: list[ServiceStats], summary: HistorySummary, *, now: datetime | None = None) -> str:
    now = now or datetime.now()
    rule = "─" * 104
    lines = [
        "CLOUD LATENCY HISTORY ANALYSIS",
        f"Analysis run: {now.strftime('%Y-%m-%d %H:%M:%S')}",
        f"Total endpoints tracked: {len(stats)}",
        "",
        f"{'ENDPOINT':<60} {'COUNT':>6} {'MIN(ms)':>8} {'AVG(ms)':>8} {'MAX(ms)':>8} {'LAST(ms)':>8} {'TREND':>10}",
        rule,
    ]
    for s in stats:
        lines.append(
            f"{s.name:<60} {s.count:>6d} {s.min_ms:>8d} {s.avg_ms:>8d} {s.max_ms:>8d} {s.last_ms:>8d} "
            f"{s.trend_percent:>7.1f}% {_trend_arrow(s.trend_percent)}"
        )
    lines.append(rule)

    if summary.fastest is None:
        lines.append("No measurements recorded yet.")
        return "\n".join(lines) + "\n"

    lines.extend(
        [
            "",
            "SUMMARY STATISTICS",
            f"Fastest endpoint:  {summary.fastest.name:<60} {summary.fastest.avg_ms} ms average",
            f"Slowest endpoint:  {summary.slowest.name:<60} {summary.slowest.avg_ms} ms average",
            "",
            f"Most improved:     {summary.most_improved.name:<60} {-summary.most_improved.trend_percent:.1f}% faster",
            f"Most degraded:     {summary.most_degraded.name:<60} {summary.most_degraded.trend_percent:.1f}% slower",
        ]
    )
    if summary.period_start and summary.period_end:
        period = summary.period_end - summary.period_start
        lines.extend(
            [
                "",
                f"Data collected from: {summary.period_start.strftime('%Y-%m-%d %H:%M:%S')} "
                f"to {summary.period_end.strftime('%Y-%m-%d %H:%M:%S')}",
                f"Collection period: {int(period.total_seconds())}s",
            ]
        )
    return "\n".join(lines) + "\n"
