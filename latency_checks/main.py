from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

import structlog
from pydantic import ValidationError

from latency_checks.analysis import compute_service_stats, render_analysis, summarize
from latency_checks.config import MonitorConfig, load_config
from latency_checks.cycle import CycleReport, CycleRunner, run_forever
from latency_checks.export import export_all
from latency_checks.history import HistorySnapshotError, HistoryStore, load_history_file
from latency_checks.probes import Prober, build_http_client
from latency_checks.report import ResultLogWriter, format_cycle_report


logger = structlog.get_logger("latency-monitor")


def configure_logging(level_name: str | None) -> None:
    level = getattr(logging, str(level_name or "INFO").upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        # stdout carries the cycle reports.
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def _load_history_store(path: Path) -> HistoryStore:
    store = HistoryStore()
    try:
        if store.load(path):
            logger.info("Loaded historical data", path=str(path), services=len(store))
        else:
            logger.info("No history file yet; starting with an empty store", path=str(path))
    except (HistorySnapshotError, OSError) as exc:
        logger.warning("Could not load history; starting with an empty store", path=str(path), error=str(exc))
    return store


def _install_stop_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support signal handlers; Ctrl+C still raises KeyboardInterrupt.
            pass


async def run_monitor(config: MonitorConfig, *, once: bool, color: bool) -> int:
    history_path = Path(config.history_path)
    store = _load_history_store(history_path)
    endpoints = config.build_endpoints()
    result_log = ResultLogWriter(Path(config.result_log_path)) if config.result_log_path else None
    if result_log is not None:
        logger.info("Logging results", path=str(result_log.path))

    def _on_report(report: CycleReport) -> None:
        started = report.started_at.astimezone().strftime("%H:%M:%S")
        print(f"\n[{started}] Cloud latency test cycle\n", flush=True)
        print(format_cycle_report(report, color=color), flush=True)
        for result in report.results:
            if result.ok:
                logger.debug(
                    "Probe result",
                    key=result.service_key,
                    ms=result.elapsed_ms,
                    trend=result.trend.value,
                    baseline_ms=result.baseline_ms,
                )
            else:
                logger.warning("Probe failed", key=result.service_key, error=result.error)
        if result_log is not None:
            result_log.write_report(report)

    stop_event = asyncio.Event()
    _install_stop_handlers(stop_event)

    logger.info(
        "Starting monitor",
        endpoints=len(endpoints),
        interval_s=config.interval_seconds,
        once=once,
    )
    async with build_http_client(config.probes) as http_client:
        runner = CycleRunner(
            endpoints=endpoints,
            prober=Prober(config.probes, http_client),
            store=store,
            snapshot_path=history_path,
        )
        await run_forever(
            runner,
            interval_seconds=config.interval_seconds,
            on_report=_on_report,
            stop_event=stop_event,
            max_cycles=1 if once else None,
        )
    logger.info("Monitor stopped")
    return 0


def _history_path(args: argparse.Namespace) -> Path:
    if getattr(args, "history", None):
        return Path(args.history)
    return Path(load_config(args.config).history_path)


def cmd_analyze(args: argparse.Namespace) -> int:
    path = _history_path(args)
    try:
        history = load_history_file(path)
    except (OSError, HistorySnapshotError) as exc:
        logger.error("Error reading history", path=str(path), error=str(exc))
        return 1
    stats = compute_service_stats(history)
    print(render_analysis(stats, summarize(stats)), end="")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    path = _history_path(args)
    try:
        history = load_history_file(path)
    except (OSError, HistorySnapshotError) as exc:
        logger.error("Error reading history", path=str(path), error=str(exc))
        return 1

    results = export_all(history, Path(args.out))
    failed = 0
    for name, outcome in results.items():
        if isinstance(outcome, Path):
            print(f"Created: {outcome}")
        else:
            failed += 1
            print(f"Error exporting {name}: {outcome}", file=sys.stderr)
    return 1 if failed else 0


def cmd_dashboard(args: argparse.Namespace) -> int:
    import uvicorn

    from latency_checks.dashboard import create_app

    app = create_app(_history_path(args))
    uvicorn.run(app, host=args.host, port=int(args.port), log_level="info")
    return 0


def cmd_monitor(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    if args.log_level is None:
        configure_logging(config.log_level)
    color = (not args.no_color) and sys.stdout.isatty()
    return asyncio.run(run_monitor(config, once=bool(args.once), color=color))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cloud infrastructure latency monitor")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to YAML config (default: $LATENCY_MONITOR_CONFIG or the bundled config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: $LOG_LEVEL or the config log_level)",
    )
    parser.set_defaults(func=cmd_monitor, once=False, no_color=False)
    sub = parser.add_subparsers(dest="command")

    p_monitor = sub.add_parser("monitor", help="Run probe cycles (default)")
    p_monitor.add_argument("--once", action="store_true", help="Run one cycle and exit")
    p_monitor.add_argument("--no-color", action="store_true", help="Disable ANSI colours")
    p_monitor.set_defaults(func=cmd_monitor)

    p_analyze = sub.add_parser("analyze", help="Print statistics from the history file")
    p_analyze.add_argument("--history", default=None, help="History snapshot path")
    p_analyze.set_defaults(func=cmd_analyze)

    p_export = sub.add_parser("export", help="Write CSV exports from the history file")
    p_export.add_argument("--history", default=None, help="History snapshot path")
    p_export.add_argument("--out", default=".", help="Output directory")
    p_export.set_defaults(func=cmd_export)

    p_dash = sub.add_parser("dashboard", help="Serve the read-only web dashboard")
    p_dash.add_argument("--history", default=None, help="History snapshot path")
    p_dash.add_argument("--host", default=os.getenv("LATENCY_DASHBOARD_HOST", "127.0.0.1"))
    p_dash.add_argument("--port", default=int(os.getenv("LATENCY_DASHBOARD_PORT", "8080")), type=int)
    p_dash.set_defaults(func=cmd_dashboard)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    configure_logging(args.log_level or os.getenv("LOG_LEVEL"))

    try:
        return int(args.func(args))
    except (ValueError, ValidationError, FileNotFoundError) as exc:
        logger.error("Configuration error", error=str(exc))
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
