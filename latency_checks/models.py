from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from latency_checks.trend import Trend


NS_PER_MS = 1_000_000


class TestKind(str, Enum):
    PING = "PING"
    DNS = "DNS"
    HTTP = "HTTP"

    # Keep pytest from trying to collect this as a test class.
    __test__ = False

    @classmethod
    def ordered(cls) -> list[TestKind]:
        """Presentation order used when grouping cycle results."""
        return [cls.PING, cls.DNS, cls.HTTP]


@dataclass(frozen=True)
class Endpoint:
    location: str
    region: str
    provider: str
    hostname: str
    test_ping: bool = True
    test_dns: bool = True
    test_http: bool = True

    @property
    def label(self) -> str:
        return f"{self.location} [{self.provider}]"

    def enabled_kinds(self) -> list[TestKind]:
        kinds: list[TestKind] = []
        if self.test_dns:
            kinds.append(TestKind.DNS)
        if self.test_ping:
            kinds.append(TestKind.PING)
        if self.test_http:
            kinds.append(TestKind.HTTP)
        return kinds


def service_key(endpoint: Endpoint, kind: TestKind) -> str:
    # Stable on-disk key format: "Ashburn, VA [AWS] - PING".
    return f"{endpoint.location} [{endpoint.provider}] - {TestKind(kind).value}"


def parse_service_key(key: str) -> tuple[str, str, str]:
    """
    Split a service key back into (location, provider, test_type).

    Keys that do not follow the "Location [Provider] - KIND" shape (e.g. "GitHub")
    come back as (key, "N/A", "OTHER").
    """
    name = str(key or "")
    location = name
    provider = "N/A"
    test_type = "OTHER"

    idx = name.rfind(" - ")
    if idx >= 0:
        test_type = name[idx + 3 :]
        name = name[:idx]
        location = name

    start = name.find("[")
    if start >= 0:
        end = name.find("]", start)
        if end > start:
            provider = name[start + 1 : end]
            location = name[:start].strip()

    return location, provider, test_type


def ns_to_ms(value_ns: int) -> int:
    return int(value_ns) // NS_PER_MS


@dataclass(frozen=True)
class Measurement:
    timestamp: datetime
    elapsed_ns: int


@dataclass(frozen=True)
class ProbeOutcome:
    ok: bool
    elapsed_ns: int
    resolved_address: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, elapsed_ns: int, *, resolved_address: str | None = None) -> ProbeOutcome:
        return cls(ok=True, elapsed_ns=max(0, int(elapsed_ns)), resolved_address=resolved_address)

    @classmethod
    def failure(cls, error: str, *, resolved_address: str | None = None) -> ProbeOutcome:
        return cls(ok=False, elapsed_ns=0, resolved_address=resolved_address, error=str(error or "unknown error"))


@dataclass(frozen=True)
class ProbeResult:
    endpoint: Endpoint
    kind: TestKind
    ok: bool
    elapsed_ns: int
    resolved_address: str | None
    error: str | None
    timestamp: datetime
    trend: Trend
    baseline_ns: int

    @property
    def service_key(self) -> str:
        return service_key(self.endpoint, self.kind)

    @property
    def elapsed_ms(self) -> int:
        return ns_to_ms(self.elapsed_ns)

    @property
    def baseline_ms(self) -> int:
        return ns_to_ms(self.baseline_ns)
