from __future__ import annotations

import asyncio
import math
import re
import sys
import time
from typing import Protocol

import httpx

from latency_checks.config import ProbeSettings
from latency_checks.models import NS_PER_MS, Endpoint, ProbeOutcome, TestKind


# macOS: "round-trip min/avg/max/stddev = 10.1/15.2/20.3/5.1 ms"
# Linux: "rtt min/avg/max/mdev = 10.1/15.2/20.3/5.1 ms"
_UNIX_RTT_RE = re.compile(r"(?:round-trip|rtt)[^=]*=\s*[\d.]+/([\d.]+)/")
# Windows: "Minimum = 10ms, Maximum = 20ms, Average = 15ms"
_WINDOWS_AVG_RE = re.compile(r"Average\s*=\s*(\d+(?:\.\d+)?)\s*ms", re.IGNORECASE)


class ProbeCapability(Protocol):
    async def probe(self, endpoint: Endpoint, kind: TestKind) -> ProbeOutcome: ...


def _error_text(exc: BaseException) -> str:
    msg = str(exc or "").strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def parse_ping_average_ms(output: str) -> float | None:
    text = str(output or "")
    m = _UNIX_RTT_RE.search(text) or _WINDOWS_AVG_RE.search(text)
    if not m:
        return None
    try:
        return float(m.group(1))
    except ValueError:
        return None


def build_ping_command(address: str, *, count: int, wait_seconds: float, platform: str | None = None) -> list[str]:
    platform = platform or sys.platform
    count = max(1, int(count))
    if platform.startswith("win"):
        return ["ping", "-n", str(count), "-w", str(int(wait_seconds * 1000)), address]
    if platform == "darwin":
        # BSD ping takes the per-reply wait in milliseconds.
        return ["ping", "-c", str(count), "-W", str(int(wait_seconds * 1000)), address]
    return ["ping", "-c", str(count), "-W", str(max(1, math.ceil(wait_seconds))), address]


def _dns_query_sync(
    *,
    hostname: str,
    record_type: str,
    nameservers: list[str] | None,
    timeout_seconds: float,
) -> tuple[list[str], int]:
    """
    One blocking lookup. Returns (addresses, resolver time in ns).

    The clock runs inside the worker thread, so time spent waiting for a free
    thread is not billed to DNS. An empty RRset (NoAnswer) is a normal outcome
    for the A -> AAAA fallback; NXDOMAIN and timeouts propagate.
    """
    import dns.resolver  # type: ignore

    resolver = dns.resolver.Resolver(configure=True)
    if nameservers:
        resolver.nameservers = list(nameservers)
    resolver.lifetime = max(0.5, float(timeout_seconds))

    started = time.perf_counter_ns()
    try:
        answer = resolver.resolve(hostname, record_type, search=False)
    except dns.resolver.NoAnswer:
        return [], time.perf_counter_ns() - started
    elapsed_ns = time.perf_counter_ns() - started
    return [rr.to_text() for rr in answer], elapsed_ns


class Prober:
    """
    Default probe capability: DNS via dnspython, ICMP via the system ping binary,
    HTTP via a shared httpx client.

    Every probe is bounded by its own timeout and reports failures as a failed
    ProbeOutcome instead of raising.
    """

    def __init__(self, settings: ProbeSettings, http_client: httpx.AsyncClient) -> None:
        self.settings = settings
        self.http_client = http_client

    async def probe(self, endpoint: Endpoint, kind: TestKind) -> ProbeOutcome:
        kind = TestKind(kind)
        if kind is TestKind.DNS:
            return await self.probe_dns(endpoint)
        if kind is TestKind.PING:
            return await self.probe_ping(endpoint)
        if kind is TestKind.HTTP:
            return await self.probe_http(endpoint)
        raise ValueError(f"unsupported test kind: {kind!r}")

    async def _resolve(self, hostname: str) -> tuple[str, int]:
        """First address for hostname, A before AAAA; elapsed covers every lookup made."""
        elapsed_ns = 0
        for record_type in ("A", "AAAA"):
            records, lookup_ns = await asyncio.to_thread(
                _dns_query_sync,
                hostname=hostname,
                record_type=record_type,
                nameservers=self.settings.dns_nameservers or None,
                timeout_seconds=self.settings.dns_timeout_seconds,
            )
            elapsed_ns += lookup_ns
            if records:
                return records[0], elapsed_ns
        raise LookupError("no IPs found")

    async def probe_dns(self, endpoint: Endpoint) -> ProbeOutcome:
        try:
            address, elapsed_ns = await self._resolve(endpoint.hostname)
        except Exception as exc:
            return ProbeOutcome.failure(_error_text(exc))
        return ProbeOutcome.success(elapsed_ns, resolved_address=address)

    async def probe_ping(self, endpoint: Endpoint) -> ProbeOutcome:
        try:
            address, _ = await self._resolve(endpoint.hostname)
        except Exception:
            return ProbeOutcome.failure("DNS resolution failed")

        cmd = build_ping_command(
            address,
            count=self.settings.ping_count,
            wait_seconds=self.settings.ping_wait_seconds,
        )
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            return ProbeOutcome.failure(f"ping unavailable: {_error_text(exc)}", resolved_address=address)

        try:
            out_b, _ = await asyncio.wait_for(proc.communicate(), timeout=self.settings.ping_deadline_seconds)
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            return ProbeOutcome.failure("ping timed out", resolved_address=address)

        if proc.returncode != 0:
            return ProbeOutcome.failure("ping failed", resolved_address=address)

        avg_ms = parse_ping_average_ms((out_b or b"").decode("utf-8", errors="replace"))
        if avg_ms is None:
            return ProbeOutcome.failure("could not parse ping output", resolved_address=address)
        return ProbeOutcome.success(int(avg_ms * NS_PER_MS), resolved_address=address)

    async def probe_http(self, endpoint: Endpoint) -> ProbeOutcome:
        url = f"{self.settings.http_scheme}://{endpoint.hostname}"
        started = time.perf_counter_ns()
        try:
            resp = await self.http_client.head(url, timeout=self.settings.http_timeout_seconds)
        except httpx.HTTPError as exc:
            return ProbeOutcome.failure(_error_text(exc))
        elapsed_ns = time.perf_counter_ns() - started
        await resp.aclose()
        # Any HTTP answer means the application layer is reachable.
        return ProbeOutcome.success(elapsed_ns)


def build_http_client(settings: ProbeSettings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        verify=settings.http_verify_tls,
        follow_redirects=False,
        timeout=settings.http_timeout_seconds,
        headers={"User-Agent": "latency-monitor/1.0"},
    )
