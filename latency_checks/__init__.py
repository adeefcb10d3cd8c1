"""Concurrent endpoint latency probing with rolling-baseline trend detection."""

from .cycle import CycleReport, CycleRunner, CycleStats, expand_tasks
from .history import HISTORY_WINDOW, HistorySnapshotError, HistoryStore
from .models import Endpoint, Measurement, ProbeOutcome, ProbeResult, TestKind, service_key
from .trend import Trend, classify

__version__ = "0.1.0"

__all__ = [
    "CycleReport",
    "CycleRunner",
    "CycleStats",
    "Endpoint",
    "HISTORY_WINDOW",
    "HistorySnapshotError",
    "HistoryStore",
    "Measurement",
    "ProbeOutcome",
    "ProbeResult",
    "TestKind",
    "Trend",
    "classify",
    "expand_tasks",
    "service_key",
]
