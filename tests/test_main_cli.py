from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
import structlog

import latency_checks.main as cli
from latency_checks.history import HistoryStore
from latency_checks.models import NS_PER_MS, Endpoint, ProbeOutcome, TestKind


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):
    for name in ("LATENCY_MONITOR_CONFIG", "LATENCY_MONITOR_INTERVAL", "LATENCY_MONITOR_HISTORY", "LATENCY_MONITOR_LOG_FILE", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    yield
    # main() binds structlog to the (captured) stderr of the running test.
    structlog.reset_defaults()


def _history(tmp_path: Path) -> Path:
    store = HistoryStore()
    store.add("Ashburn, VA [AWS] - PING", datetime(2025, 1, 1, tzinfo=timezone.utc), 12 * NS_PER_MS)
    path = tmp_path / "latency_history.json"
    store.save(path)
    return path


class StaticProber:
    def __init__(self, settings, http_client) -> None:
        self.settings = settings

    async def probe(self, endpoint: Endpoint, kind: TestKind) -> ProbeOutcome:
        if kind is TestKind.HTTP:
            return ProbeOutcome.failure("ConnectError: refused")
        return ProbeOutcome.success(25 * NS_PER_MS, resolved_address="192.0.2.1")


def test_monitor_once(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    history = tmp_path / "state" / "latency_history.json"
    result_log = tmp_path / "cloud_latency.log"
    config = tmp_path / "config.yaml"
    config.write_text(
        f"""
history_path: {history}
result_log_path: {result_log}
endpoints:
  - {{location: "Dublin, IE", provider: AWS, hostname: s3.eu-west-1.amazonaws.com}}
""",
        encoding="utf-8",
    )
    monkeypatch.setattr(cli, "Prober", StaticProber)

    assert cli.main(["--config", str(config), "monitor", "--once", "--no-color"]) == 0

    out = capsys.readouterr().out
    assert "=== SUMMARY ===" in out
    assert "Success rate: 66.7% (2/3)" in out
    assert "\033[" not in out

    raw = json.loads(history.read_text(encoding="utf-8"))
    assert sorted(raw) == ["Dublin, IE [AWS] - DNS", "Dublin, IE [AWS] - PING"]
    assert len(result_log.read_text(encoding="utf-8").splitlines()) == 3


def test_analyze(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["analyze", "--history", str(_history(tmp_path))]) == 0
    out = capsys.readouterr().out
    assert "CLOUD LATENCY HISTORY ANALYSIS" in out
    assert "Ashburn, VA [AWS] - PING" in out


def test_analyze_missing_history(tmp_path: Path) -> None:
    assert cli.main(["analyze", "--history", str(tmp_path / "missing.json")]) == 1


def test_export(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    out_dir = tmp_path / "csv"
    assert cli.main(["export", "--history", str(_history(tmp_path)), "--out", str(out_dir)]) == 0
    assert len(list(out_dir.glob("*.csv"))) == 4
    assert capsys.readouterr().out.count("Created: ") == 4


def test_config_error_exit_code(tmp_path: Path) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("endpoints: []\n", encoding="utf-8")
    assert cli.main(["--config", str(config), "monitor", "--once"]) == 2
    assert cli.main(["--config", str(tmp_path / "missing.yaml"), "monitor", "--once"]) == 2
