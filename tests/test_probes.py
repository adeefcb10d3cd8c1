from __future__ import annotations

import asyncio

import httpx
import pytest

from latency_checks.config import ProbeSettings
from latency_checks.models import NS_PER_MS, Endpoint, TestKind
from latency_checks.probes import Prober, build_ping_command, parse_ping_average_ms


EP = Endpoint(location="Ashburn, VA", region="us-east-1", provider="AWS", hostname="s3.us-east-1.amazonaws.com")

LINUX_PING = """PING 192.0.2.10 (192.0.2.10) 56(84) bytes of data.
64 bytes from 192.0.2.10: icmp_seq=1 ttl=52 time=12.1 ms

--- 192.0.2.10 ping statistics ---
3 packets transmitted, 3 received, 0% packet loss, time 2003ms
rtt min/avg/max/mdev = 11.902/12.345/12.801/0.367 ms
"""

MACOS_PING = """--- 192.0.2.10 ping statistics ---
3 packets transmitted, 3 packets received, 0.0% packet loss
round-trip min/avg/max/stddev = 10.1/15.2/20.3/5.1 ms
"""

WINDOWS_PING = """Ping statistics for 192.0.2.10:
    Packets: Sent = 3, Received = 3, Lost = 0 (0% loss),
Approximate round trip times in milli-seconds:
    Minimum = 10ms, Maximum = 20ms, Average = 15ms
"""


def test_parse_ping_average_ms() -> None:
    assert parse_ping_average_ms(LINUX_PING) == pytest.approx(12.345)
    assert parse_ping_average_ms(MACOS_PING) == pytest.approx(15.2)
    assert parse_ping_average_ms(WINDOWS_PING) == pytest.approx(15.0)
    assert parse_ping_average_ms("Request timed out.") is None
    assert parse_ping_average_ms("") is None


def test_build_ping_command_per_platform() -> None:
    assert build_ping_command("192.0.2.10", count=3, wait_seconds=5, platform="linux") == [
        "ping", "-c", "3", "-W", "5", "192.0.2.10",
    ]
    assert build_ping_command("192.0.2.10", count=3, wait_seconds=0.5, platform="linux")[4] == "1"
    assert build_ping_command("192.0.2.10", count=3, wait_seconds=5, platform="darwin") == [
        "ping", "-c", "3", "-W", "5000", "192.0.2.10",
    ]
    assert build_ping_command("192.0.2.10", count=2, wait_seconds=5, platform="win32") == [
        "ping", "-n", "2", "-w", "5000", "192.0.2.10",
    ]


def _fake_dns(answers: dict[str, list[str]]):
    calls: list[str] = []

    def fake_dns_query_sync(*, hostname: str, record_type: str, nameservers, timeout_seconds: float) -> tuple[list[str], int]:
        calls.append(record_type)
        return list(answers.get(record_type, [])), 2 * NS_PER_MS

    return fake_dns_query_sync, calls


@pytest.mark.asyncio
async def test_dns_probe_falls_back_to_aaaa(monkeypatch: pytest.MonkeyPatch) -> None:
    fake, calls = _fake_dns({"AAAA": ["2001:db8::1"]})
    monkeypatch.setattr("latency_checks.probes._dns_query_sync", fake)

    outcome = await Prober(ProbeSettings(), http_client=None).probe(EP, TestKind.DNS)  # type: ignore[arg-type]

    assert outcome.ok is True
    assert outcome.resolved_address == "2001:db8::1"
    # Both lookups count towards the DNS time.
    assert outcome.elapsed_ns == 4 * NS_PER_MS
    assert calls == ["A", "AAAA"]


@pytest.mark.asyncio
async def test_dns_probe_no_records_is_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    fake, _ = _fake_dns({})
    monkeypatch.setattr("latency_checks.probes._dns_query_sync", fake)

    outcome = await Prober(ProbeSettings(), http_client=None).probe_dns(EP)  # type: ignore[arg-type]

    assert outcome.ok is False
    assert outcome.elapsed_ns == 0
    assert outcome.error == "LookupError: no IPs found"


@pytest.mark.asyncio
async def test_dns_probe_resolver_error_is_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def boom(**kwargs):
        raise TimeoutError("resolution lifetime expired")

    monkeypatch.setattr("latency_checks.probes._dns_query_sync", boom)

    outcome = await Prober(ProbeSettings(), http_client=None).probe_dns(EP)  # type: ignore[arg-type]

    assert outcome.ok is False
    assert "resolution lifetime expired" in (outcome.error or "")


@pytest.mark.asyncio
async def test_http_probe_any_status_counts_as_reachable() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(403)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        outcome = await Prober(ProbeSettings(), client).probe(EP, TestKind.HTTP)

    assert outcome.ok is True
    assert outcome.resolved_address is None
    assert seen[0].method == "HEAD"
    assert seen[0].url.scheme == "https"
    assert seen[0].url.host == "s3.us-east-1.amazonaws.com"


@pytest.mark.asyncio
async def test_http_probe_transport_error_is_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        outcome = await Prober(ProbeSettings(http_scheme="http"), client).probe_http(EP)

    assert outcome.ok is False
    assert outcome.elapsed_ns == 0
    assert outcome.error == "ConnectError: connection refused"


class FakeProc:
    def __init__(self, output: bytes, returncode: int, *, hang: bool = False) -> None:
        self.output = output
        self.returncode = returncode
        self.hang = hang
        self.killed = False

    async def communicate(self):
        if self.hang:
            await asyncio.sleep(10)
        return self.output, None

    def kill(self) -> None:
        self.killed = True

    async def wait(self) -> int:
        return self.returncode


def _patch_ping(monkeypatch: pytest.MonkeyPatch, proc: FakeProc | Exception) -> list[tuple]:
    fake_dns, _ = _fake_dns({"A": ["192.0.2.10"]})
    monkeypatch.setattr("latency_checks.probes._dns_query_sync", fake_dns)
    commands: list[tuple] = []

    async def fake_exec(*cmd, **kwargs):
        commands.append(cmd)
        if isinstance(proc, Exception):
            raise proc
        return proc

    monkeypatch.setattr("asyncio.create_subprocess_exec", fake_exec)
    return commands


@pytest.mark.asyncio
async def test_ping_probe_success(monkeypatch: pytest.MonkeyPatch) -> None:
    commands = _patch_ping(monkeypatch, FakeProc(LINUX_PING.encode(), 0))

    outcome = await Prober(ProbeSettings(), http_client=None).probe(EP, TestKind.PING)  # type: ignore[arg-type]

    assert outcome.ok is True
    assert outcome.resolved_address == "192.0.2.10"
    assert outcome.elapsed_ns == int(12.345 * NS_PER_MS)
    assert commands[0][0] == "ping"
    assert commands[0][-1] == "192.0.2.10"


@pytest.mark.asyncio
async def test_ping_probe_nonzero_exit(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_ping(monkeypatch, FakeProc(b"100% packet loss", 1))

    outcome = await Prober(ProbeSettings(), http_client=None).probe_ping(EP)  # type: ignore[arg-type]

    assert outcome.ok is False
    assert outcome.error == "ping failed"
    assert outcome.resolved_address == "192.0.2.10"


@pytest.mark.asyncio
async def test_ping_probe_unparseable_output(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_ping(monkeypatch, FakeProc(b"something odd", 0))

    outcome = await Prober(ProbeSettings(), http_client=None).probe_ping(EP)  # type: ignore[arg-type]

    assert outcome.ok is False
    assert outcome.error == "could not parse ping output"


@pytest.mark.asyncio
async def test_ping_probe_deadline_kills_process(monkeypatch: pytest.MonkeyPatch) -> None:
    proc = FakeProc(b"", 0, hang=True)
    _patch_ping(monkeypatch, proc)

    settings = ProbeSettings(ping_deadline_seconds=0.05)
    outcome = await Prober(settings, http_client=None).probe_ping(EP)  # type: ignore[arg-type]

    assert outcome.ok is False
    assert outcome.error == "ping timed out"
    assert proc.killed is True


@pytest.mark.asyncio
async def test_ping_probe_missing_binary(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_ping(monkeypatch, FileNotFoundError("ping"))

    outcome = await Prober(ProbeSettings(), http_client=None).probe_ping(EP)  # type: ignore[arg-type]

    assert outcome.ok is False
    assert (outcome.error or "").startswith("ping unavailable")


@pytest.mark.asyncio
async def test_ping_probe_dns_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    fake, _ = _fake_dns({})
    monkeypatch.setattr("latency_checks.probes._dns_query_sync", fake)

    outcome = await Prober(ProbeSettings(), http_client=None).probe_ping(EP)  # type: ignore[arg-type]

    assert outcome.ok is False
    assert outcome.error == "DNS resolution failed"
