from __future__ import annotations

import asyncio
import time
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from latency_checks.analysis import ServiceStats, compute_service_stats
from latency_checks.history import HistorySnapshotError, load_history_file


logger = structlog.get_logger(__name__)

_DASHBOARD_STATUS = {"DEGRADED": "slow", "IMPROVED": "fast", "STEADY": "steady"}


def _summary_row(s: ServiceStats) -> dict[str, Any]:
    return {
        "name": s.name,
        "location": s.location,
        "provider": s.provider,
        "test_type": s.test_type.lower(),
        "latest_ms": s.last_ms,
        "avg_ms": s.avg_ms,
        "min_ms": s.min_ms,
        "max_ms": s.max_ms,
        "count": s.count,
        "status": _DASHBOARD_STATUS.get(s.status, "steady"),
        "trend_percent": round(s.trend_percent, 2),
    }


def _mean_avg_ms(stats: list[ServiceStats], key) -> dict[str, int]:
    """Mean of per-service averages, grouped by key and ordered by group name."""
    groups: dict[str, list[int]] = {}
    for s in stats:
        groups.setdefault(key(s), []).append(s.avg_ms)
    return {name: round(sum(v) / len(v)) for name, v in sorted(groups.items())}


def load_dashboard_data(history_path: Path) -> dict[str, Any]:
    history = load_history_file(history_path)
    stats = compute_service_stats(history)
    stats.sort(key=lambda s: (s.location, s.test_type))
    return {
        "last_update": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        "total_endpoints": len(stats),
        "summary": [_summary_row(s) for s in stats],
        # Chart series.
        "by_location": _mean_avg_ms(stats, lambda s: s.location),
        "by_test_type": _mean_avg_ms(stats, lambda s: s.test_type.lower()),
    }


def create_app(history_path: str | Path) -> FastAPI:
    app = FastAPI(title="Cloud Latency Dashboard", version="0.1.0")
    app.state.history_path = Path(history_path)

    templates_dir = Path(__file__).parent / "templates"
    app.state.templates = Jinja2Templates(directory=str(templates_dir))

    async def _load() -> dict[str, Any]:
        try:
            return await asyncio.to_thread(load_dashboard_data, app.state.history_path)
        except (OSError, HistorySnapshotError) as exc:
            logger.warning("Error loading history", path=str(app.state.history_path), error=str(exc))
            raise HTTPException(status_code=500, detail=f"Error loading data: {exc}") from exc

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True, "ts": time.time()}

    @app.get("/api/data")
    async def api_data() -> dict[str, Any]:
        return await _load()

    @app.get("/", response_class=HTMLResponse)
    async def dashboard(req: Request) -> HTMLResponse:
        data = await _load()
        return app.state.templates.TemplateResponse(req, "dashboard.html", {"title": "Cloud Latency Dashboard", **data})

    return app
