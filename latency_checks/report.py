from __future__ import annotations

from pathlib import Path

import structlog

from latency_checks.cycle import CycleReport
from latency_checks.models import ProbeResult, TestKind, ns_to_ms
from latency_checks.trend import Trend


logger = structlog.get_logger(__name__)

RESET = "\033[0m"
GREEN = "\033[32m"
RED = "\033[31m"
YELLOW = "\033[33m"
CYAN = "\033[36m"
MAGENTA = "\033[35m"

SECTION_TITLES = {
    TestKind.PING: "=== ICMP PING TESTS (Network Layer Latency) ===",
    TestKind.DNS: "=== DNS RESOLUTION TESTS ===",
    TestKind.HTTP: "=== HTTP/HTTPS TESTS (Application Layer Latency) ===",
}

# DEGRADED means slower, so it is the "bad" colour.
_TREND_COLORS = {
    Trend.DEGRADED: RED,
    Trend.IMPROVED: GREEN,
    Trend.STEADY: YELLOW,
    Trend.BASELINE: CYAN,
}


def _paint(text: str, color: str, enabled: bool) -> str:
    return f"{color}{text}{RESET}" if enabled else text


def format_result_line(result: ProbeResult, *, color: bool = False) -> str:
    status = "UP" if result.ok else "DOWN"
    status_part = _paint(f"[{status}]", GREEN if result.ok else RED, color)
    label = f"{result.endpoint.label:<35}"

    if not result.ok:
        return f"{status_part} {label} {result.error or ''}".rstrip()

    trend = result.trend
    line = f"{status_part} {label} {result.elapsed_ms:4d}ms {_paint(f'[{trend.value}{trend.symbol}]', _TREND_COLORS[trend], color)}"
    if trend is not Trend.BASELINE and result.baseline_ns > 0:
        line += f" (baseline: {result.baseline_ms}ms)"
    if result.resolved_address and result.kind is TestKind.PING:
        line += f" [{result.resolved_address}]"
    return line


def format_log_line(result: ProbeResult) -> str:
    ts = result.timestamp.astimezone().strftime("%Y-%m-%d %H:%M:%S")
    status = "UP" if result.ok else "DOWN"
    line = (
        f"{ts} | [{status}] {result.endpoint.label:<35} | Test: {result.kind.value} "
        f"| Response: {result.elapsed_ms}ms | Trend: {result.trend.value}"
    )
    if not result.ok:
        line += f" | Error: {result.error}"
    return line


def format_summary(report: CycleReport, *, color: bool = False) -> str:
    stats = report.stats
    lines = [
        _paint("=== SUMMARY ===", CYAN, color),
        f"Total tests executed: {stats.total}",
        _paint(
            f"Success rate: {stats.success_rate_percent:.1f}% ({stats.successes}/{stats.total})",
            GREEN,
            color,
        ),
        f"Average response time: {ns_to_ms(stats.mean_elapsed_ns)}ms",
        f"Total execution time: {stats.wall_clock_seconds:.2f}s",
    ]
    if report.persist_error:
        lines.append(_paint(f"Warning: Could not save history: {report.persist_error}", YELLOW, color))
    return "\n".join(lines)


def format_cycle_report(report: CycleReport, *, color: bool = False) -> str:
    blocks: list[str] = []
    for kind in TestKind.ordered():
        results = report.results_by_kind.get(kind) or []
        if not results:
            continue
        lines = [_paint(SECTION_TITLES[kind], MAGENTA, color)]
        lines.extend(format_result_line(r, color=color) for r in results)
        blocks.append("\n".join(lines))
    blocks.append(format_summary(report, color=color))
    return "\n\n".join(blocks) + "\n"


class ResultLogWriter:
    """Appends one line per probe result to a plain-text log file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def write_report(self, report: CycleReport) -> int:
        lines = [format_log_line(r) for kind in TestKind.ordered() for r in report.results_by_kind.get(kind) or []]
        if not lines:
            return 0
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")
        except OSError as exc:
            logger.warning("Could not write result log", path=str(self.path), error=str(exc))
            return 0
        return len(lines)
