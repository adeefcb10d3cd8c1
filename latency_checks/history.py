from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from latency_checks.models import Measurement


HISTORY_WINDOW = 10

# Snapshot encoding (latency_history.json), one list per service key:
#   {"Timestamp": "<ISO-8601>", "ResponseTime": <int nanoseconds>}
_TS_FIELD = "Timestamp"
_ELAPSED_FIELD = "ResponseTime"


class HistorySnapshotError(ValueError):
    pass


def _parse_timestamp(value: Any) -> datetime:
    if not isinstance(value, str) or not value.strip():
        raise HistorySnapshotError(f"invalid timestamp {value!r}")
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(s)
    except ValueError as exc:
        raise HistorySnapshotError(f"invalid timestamp {value!r}") from exc
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _parse_elapsed_ns(value: Any) -> int:
    # bool is an int subclass; reject it explicitly.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise HistorySnapshotError(f"invalid response time {value!r}")
    if value < 0:
        raise HistorySnapshotError(f"negative response time {value!r}")
    return int(value)


def decode_snapshot(raw: Any, *, window: int = HISTORY_WINDOW) -> dict[str, list[Measurement]]:
    """
    Strict decode of a snapshot payload.

    Any malformed entry raises HistorySnapshotError. Each service keeps its newest
    `window` measurements, oldest first.
    """
    if not isinstance(raw, dict):
        raise HistorySnapshotError(f"snapshot root must be a mapping, got {type(raw).__name__}")

    out: dict[str, list[Measurement]] = {}
    for key, items in raw.items():
        if not isinstance(key, str) or not key:
            raise HistorySnapshotError(f"invalid service key {key!r}")
        if items is None:
            items = []
        if not isinstance(items, list):
            raise HistorySnapshotError(f"{key}: expected a list of measurements")

        points: list[Measurement] = []
        for idx, item in enumerate(items):
            if not isinstance(item, dict):
                raise HistorySnapshotError(f"{key}[{idx}]: expected an object")
            try:
                points.append(
                    Measurement(
                        timestamp=_parse_timestamp(item.get(_TS_FIELD)),
                        elapsed_ns=_parse_elapsed_ns(item.get(_ELAPSED_FIELD)),
                    )
                )
            except HistorySnapshotError as exc:
                raise HistorySnapshotError(f"{key}[{idx}]: {exc}") from exc

        points.sort(key=lambda m: m.timestamp)
        out[key] = points[-window:] if window > 0 else []
    return out


def encode_snapshot(history: dict[str, list[Measurement]]) -> dict[str, list[dict[str, Any]]]:
    return {
        key: [{_TS_FIELD: m.timestamp.isoformat(), _ELAPSED_FIELD: int(m.elapsed_ns)} for m in points]
        for key, points in history.items()
    }


def load_history_file(path: Path, *, window: int = HISTORY_WINDOW) -> dict[str, list[Measurement]]:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise HistorySnapshotError(f"{path}: invalid JSON: {exc}") from exc
    return decode_snapshot(raw, window=window)


class HistoryStore:
    """
    Rolling per-service measurement windows.

    One threading.Lock guards every key, so the store is safe to use from the event
    loop and from worker threads.
    """

    def __init__(self, window: int = HISTORY_WINDOW) -> None:
        if int(window) < 1:
            raise ValueError("window must be >= 1")
        self.window = int(window)
        self._lock = threading.Lock()
        self._services: dict[str, list[Measurement]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._services)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._services

    def add(self, key: str, timestamp: datetime, elapsed_ns: int) -> None:
        point = Measurement(timestamp=timestamp, elapsed_ns=int(elapsed_ns))
        with self._lock:
            points = self._services.setdefault(key, [])
            points.append(point)
            if len(points) > self.window:
                del points[: len(points) - self.window]

    def baseline(self, key: str) -> tuple[int, int]:
        """Return (mean elapsed ns, sample count) for the current window; (0, 0) if unknown."""
        with self._lock:
            points = self._services.get(key)
            if not points:
                return 0, 0
            total = sum(p.elapsed_ns for p in points)
            count = len(points)
        return total // count, count

    def samples(self, key: str) -> list[Measurement]:
        with self._lock:
            return list(self._services.get(key) or [])

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._services)

    def snapshot(self) -> dict[str, list[Measurement]]:
        with self._lock:
            return {key: list(points) for key, points in self._services.items()}

    def load(self, path: Path) -> bool:
        """
        Hydrate from a snapshot file. Returns False when the file does not exist.

        Raises HistorySnapshotError on malformed content; the store is left untouched.
        """
        path = Path(path)
        if not path.exists():
            return False
        decoded = load_history_file(path, window=self.window)
        with self._lock:
            self._services.update(decoded)
        return True

    def save(self, path: Path) -> None:
        payload = encode_snapshot(self.snapshot())
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f"{path.name}.tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(path)
