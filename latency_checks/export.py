from __future__ import annotations

import csv
from pathlib import Path
from typing import Callable

import structlog

from latency_checks.analysis import compute_service_stats
from latency_checks.models import Measurement, ns_to_ms, parse_service_key
from latency_checks.trend import DEGRADED_THRESHOLD_PERCENT, IMPROVED_THRESHOLD_PERCENT, percent_change


logger = structlog.get_logger(__name__)

SUMMARY_FILE = "latency_summary.csv"
TIMESERIES_FILE = "latency_timeseries.csv"
LATEST_FILE = "latency_latest.csv"
BY_TEST_TYPE_FILE = "latency_by_test_type.csv"

_TS_FORMAT = "%Y-%m-%d %H:%M:%S"


def _write_rows(path: Path, header: list[str], rows: list[list[str]]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        writer.writerows(rows)
    return path


def export_summary(history: dict[str, list[Measurement]], out_dir: Path) -> Path:
    stats = compute_service_stats(history)
    stats.sort(key=lambda s: (s.location, s.test_type))
    rows = [
        [
            s.name,
            s.test_type,
            s.location,
            s.provider,
            str(s.count),
            str(s.min_ms),
            str(s.avg_ms),
            str(s.max_ms),
            f"{s.std_dev_ms:.2f}",
            str(s.last_ms),
            str(s.first_ms),
            f"{s.trend_percent:.2f}",
            s.status,
        ]
        for s in stats
    ]
    header = [
        "Endpoint", "Test Type", "Location", "Provider", "Sample Count",
        "Min (ms)", "Average (ms)", "Max (ms)", "Std Dev (ms)",
        "Latest (ms)", "First (ms)", "Trend (%)", "Status",
    ]
    return _write_rows(out_dir / SUMMARY_FILE, header, rows)


def export_timeseries(history: dict[str, list[Measurement]], out_dir: Path) -> Path:
    measurements = []
    for name, points in history.items():
        location, provider, test_type = parse_service_key(name)
        for p in points:
            measurements.append((p.timestamp, name, test_type, location, provider, ns_to_ms(p.elapsed_ns)))
    measurements.sort(key=lambda m: m[0])

    rows = [[ts.strftime(_TS_FORMAT), name, tt, loc, prov, str(ms)] for ts, name, tt, loc, prov, ms in measurements]
    header = ["Timestamp", "Endpoint", "Test Type", "Location", "Provider", "Response Time (ms)"]
    return _write_rows(out_dir / TIMESERIES_FILE, header, rows)


def _latest_status(trend_percent: float) -> str:
    if trend_percent > DEGRADED_THRESHOLD_PERCENT:
        return "SLOW"
    if trend_percent < IMPROVED_THRESHOLD_PERCENT:
        return "FAST"
    return "NORMAL"


def export_latest(history: dict[str, list[Measurement]], out_dir: Path) -> Path:
    entries = []
    for name, points in history.items():
        if not points:
            continue
        location, provider, test_type = parse_service_key(name)
        latest = points[-1]
        latest_ms = ns_to_ms(latest.elapsed_ns)
        baseline_ms = sum(ns_to_ms(p.elapsed_ns) for p in points) // len(points)
        trend = percent_change(latest_ms, baseline_ms) or 0.0
        entries.append((location, test_type, name, provider, latest_ms, latest.timestamp, trend))
    entries.sort(key=lambda e: (e[0], e[1]))

    rows = [
        [name, tt, loc, prov, str(ms), ts.strftime(_TS_FORMAT), f"{trend:.2f}", _latest_status(trend)]
        for loc, tt, name, prov, ms, ts, trend in entries
    ]
    header = [
        "Endpoint", "Test Type", "Location", "Provider",
        "Latest Response Time (ms)", "Timestamp", "vs Baseline (%)", "Status",
    ]
    return _write_rows(out_dir / LATEST_FILE, header, rows)


def export_by_test_type(history: dict[str, list[Measurement]], out_dir: Path) -> Path:
    by_location: dict[tuple[str, str], dict[str, int]] = {}
    for name, points in history.items():
        if not points:
            continue
        location, provider, test_type = parse_service_key(name)
        avg_ms = sum(ns_to_ms(p.elapsed_ns) for p in points) // len(points)
        by_location.setdefault((location, provider), {})[test_type] = avg_ms

    rows = []
    for (location, provider), values in sorted(by_location.items()):
        ping = values.get("PING", 0)
        dns = values.get("DNS", 0)
        http = values.get("HTTP", 0)
        rows.append([location, provider, str(ping), str(dns), str(http), str(ping + dns + http)])
    header = ["Location", "Provider", "PING (ms)", "DNS (ms)", "HTTP (ms)", "Total Latency (ms)"]
    return _write_rows(out_dir / BY_TEST_TYPE_FILE, header, rows)


EXPORTERS: dict[str, Callable[[dict[str, list[Measurement]], Path], Path]] = {
    SUMMARY_FILE: export_summary,
    TIMESERIES_FILE: export_timeseries,
    LATEST_FILE: export_latest,
    BY_TEST_TYPE_FILE: export_by_test_type,
}


def export_all(history: dict[str, list[Measurement]], out_dir: Path) -> dict[str, Path | str]:
    """
    Run every exporter. Returns {file name: written path, or an error string}.

    One failing export does not stop the others.
    """
    out_dir = Path(out_dir)
    results: dict[str, Path | str] = {}
    for name, exporter in EXPORTERS.items():
        try:
            results[name] = exporter(history, out_dir)
        except OSError as exc:
            logger.warning("Export failed", file=name, error=str(exc))
            results[name] = f"{type(exc).__name__}: {exc}"
    return results
