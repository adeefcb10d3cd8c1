from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Iterable

import structlog

from latency_checks.history import HistoryStore
from latency_checks.models import Endpoint, ProbeOutcome, ProbeResult, TestKind, service_key
from latency_checks.probes import ProbeCapability
from latency_checks.trend import classify


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProbeTask:
    endpoint: Endpoint
    kind: TestKind


@dataclass(frozen=True)
class CycleStats:
    total: int
    successes: int
    failures: int
    success_rate_percent: float
    mean_elapsed_ns: int
    wall_clock_seconds: float


@dataclass
class CycleReport:
    started_at: datetime
    results: list[ProbeResult]
    results_by_kind: dict[TestKind, list[ProbeResult]]
    stats: CycleStats
    persisted: bool = False
    persist_error: str | None = None


def expand_tasks(endpoints: Iterable[Endpoint]) -> list[ProbeTask]:
    return [ProbeTask(endpoint=ep, kind=kind) for ep in endpoints for kind in ep.enabled_kinds()]


def group_by_kind(results: Iterable[ProbeResult]) -> dict[TestKind, list[ProbeResult]]:
    grouped: dict[TestKind, list[ProbeResult]] = {kind: [] for kind in TestKind.ordered()}
    for result in results:
        grouped[result.kind].append(result)
    return {kind: items for kind, items in grouped.items() if items}


def compute_stats(results: list[ProbeResult], *, wall_clock_seconds: float) -> CycleStats:
    total = len(results)
    ok_elapsed = [r.elapsed_ns for r in results if r.ok]
    successes = len(ok_elapsed)
    return CycleStats(
        total=total,
        successes=successes,
        failures=total - successes,
        success_rate_percent=(successes / float(total) * 100.0) if total else 0.0,
        mean_elapsed_ns=(sum(ok_elapsed) // successes) if successes else 0,
        wall_clock_seconds=float(wall_clock_seconds),
    )


class CycleRunner:
    """
    Runs one monitoring cycle: expand -> dispatch -> await all -> aggregate -> persist.

    The runner holds no state between cycles apart from the injected HistoryStore.
    """

    def __init__(
        self,
        *,
        endpoints: Iterable[Endpoint],
        prober: ProbeCapability,
        store: HistoryStore,
        snapshot_path: Path | None = None,
    ) -> None:
        self.endpoints = list(endpoints)
        self.prober = prober
        self.store = store
        self.snapshot_path = Path(snapshot_path) if snapshot_path is not None else None

    async def _run_task(self, task: ProbeTask) -> tuple[ProbeTask, ProbeOutcome, datetime]:
        timestamp = datetime.now(timezone.utc)
        try:
            outcome = await self.prober.probe(task.endpoint, task.kind)
        except Exception as exc:
            # Raised probe errors become failed results.
            logger.warning(
                "Probe raised",
                endpoint=task.endpoint.label,
                kind=task.kind.value,
                error=f"{type(exc).__name__}: {exc}",
            )
            outcome = ProbeOutcome.failure(f"{type(exc).__name__}: {exc}")
        return task, outcome, timestamp

    def _aggregate(self, completed: list[tuple[ProbeTask, ProbeOutcome, datetime]]) -> list[ProbeResult]:
        results: list[ProbeResult] = []
        for task, outcome, timestamp in completed:
            key = service_key(task.endpoint, task.kind)
            baseline_ns, count = self.store.baseline(key)
            elapsed_ns = int(outcome.elapsed_ns) if outcome.ok else 0
            trend = classify(elapsed_ns, baseline_ns, count)

            # Only successful measurements enter the history.
            if outcome.ok:
                self.store.add(key, timestamp, elapsed_ns)

            results.append(
                ProbeResult(
                    endpoint=task.endpoint,
                    kind=task.kind,
                    ok=bool(outcome.ok),
                    elapsed_ns=elapsed_ns,
                    resolved_address=outcome.resolved_address,
                    error=None if outcome.ok else (outcome.error or "unknown error"),
                    timestamp=timestamp,
                    trend=trend,
                    baseline_ns=baseline_ns,
                )
            )
        return results

    def persist(self) -> tuple[bool, str | None]:
        if self.snapshot_path is None:
            return False, None
        try:
            self.store.save(self.snapshot_path)
        except OSError as exc:
            logger.warning("Could not save history", path=str(self.snapshot_path), error=str(exc))
            return False, f"{type(exc).__name__}: {exc}"
        return True, None

    async def run_once(self) -> CycleReport:
        started_at = datetime.now(timezone.utc)
        started = time.perf_counter()

        tasks = expand_tasks(self.endpoints)
        logger.debug("Cycle dispatch", tasks=len(tasks), endpoints=len(self.endpoints))

        completed = list(await asyncio.gather(*(self._run_task(t) for t in tasks)))

        results = self._aggregate(completed)
        stats = compute_stats(results, wall_clock_seconds=time.perf_counter() - started)
        persisted, persist_error = self.persist()

        logger.info(
            "Cycle finished",
            total=stats.total,
            ok=stats.successes,
            failed=stats.failures,
            avg_ms=stats.mean_elapsed_ns // 1_000_000,
            wall_s=round(stats.wall_clock_seconds, 2),
            persisted=persisted,
        )
        return CycleReport(
            started_at=started_at,
            results=results,
            results_by_kind=group_by_kind(results),
            stats=stats,
            persisted=persisted,
            persist_error=persist_error,
        )


async def run_forever(
    runner: CycleRunner,
    *,
    interval_seconds: float,
    on_report: Callable[[CycleReport], Awaitable[None] | None] | None = None,
    stop_event: asyncio.Event | None = None,
    max_cycles: int | None = None,
) -> int:
    """
    Run a cycle immediately, then one per interval tick until stopped.

    Ticks are anchored to the first cycle's start; a cycle that overruns its slot
    is followed immediately by the next one. Returns the number of cycles run.
    """
    interval_seconds = max(0.0, float(interval_seconds))
    stop_event = stop_event or asyncio.Event()
    next_start = time.monotonic()
    cycles = 0

    while not stop_event.is_set():
        try:
            report = await runner.run_once()
            if on_report is not None:
                maybe = on_report(report)
                if asyncio.iscoroutine(maybe):
                    await maybe
        except Exception:
            logger.exception("Cycle crashed; continuing with next tick")
        cycles += 1
        if max_cycles is not None and cycles >= max_cycles:
            break

        next_start += interval_seconds
        now = time.monotonic()
        if next_start <= now:
            # Overran the slot: start right away and re-anchor on this moment.
            next_start = now
            continue
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=next_start - now)
        except asyncio.TimeoutError:
            pass

    return cycles
