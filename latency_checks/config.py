"""Configuration management for the latency monitor."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from latency_checks.models import Endpoint


DEFAULT_CONFIG_PATH = Path(__file__).with_name("config.yaml")


class ProbeSettings(BaseModel):
    """Timeouts and knobs for the DNS / ping / HTTP probes."""
    dns_timeout_seconds: float = Field(default=5.0, gt=0, description="DNS lookup lifetime")
    dns_nameservers: list[str] = Field(default_factory=list, description="Override system resolvers")
    ping_count: int = Field(default=3, ge=1, le=20, description="Echo requests per ping probe")
    ping_wait_seconds: float = Field(default=5.0, gt=0, description="Per-reply wait passed to ping")
    ping_deadline_seconds: float = Field(default=20.0, gt=0, description="Hard cap for the ping process")
    http_timeout_seconds: float = Field(default=10.0, gt=0, description="HTTP HEAD timeout")
    http_scheme: str = Field(default="https", description="Scheme used for HTTP probes")
    http_verify_tls: bool = Field(default=False, description="Verify TLS certificates on HTTP probes")

    @field_validator("http_scheme")
    @classmethod
    def _check_scheme(cls, value: str) -> str:
        scheme = str(value or "").strip().lower()
        if scheme not in ("http", "https"):
            raise ValueError("http_scheme must be 'http' or 'https'")
        return scheme


class EndpointConfig(BaseModel):
    """One monitored endpoint; flags select which tests run against it."""
    location: str = Field(min_length=1)
    region: str = ""
    provider: str = Field(default="N/A", min_length=1)
    hostname: str = Field(min_length=1)
    test_ping: bool = True
    test_dns: bool = True
    test_http: bool = True

    def to_endpoint(self) -> Endpoint:
        return Endpoint(
            location=self.location.strip(),
            region=self.region.strip(),
            provider=self.provider.strip(),
            hostname=self.hostname.strip(),
            test_ping=self.test_ping,
            test_dns=self.test_dns,
            test_http=self.test_http,
        )


class MonitorConfig(BaseModel):
    """Main configuration for the monitor."""

    interval_seconds: float = Field(default=30.0, gt=0, description="Seconds between cycle starts")
    history_path: str = Field(default="latency_history.json", description="History snapshot file")
    result_log_path: Optional[str] = Field(default="cloud_latency.log", description="Per-result log file")
    log_level: str = Field(default="INFO", description="Logging level")

    probes: ProbeSettings = Field(default_factory=ProbeSettings)
    endpoints: list[EndpointConfig] = Field(default_factory=list)

    @field_validator("endpoints")
    @classmethod
    def _check_endpoints(cls, value: list[EndpointConfig]) -> list[EndpointConfig]:
        if not value:
            raise ValueError("config must contain a non-empty 'endpoints' list")
        return value

    def build_endpoints(self) -> list[Endpoint]:
        return [entry.to_endpoint() for entry in self.endpoints]


def load_config(config_path: Optional[str | Path] = None) -> MonitorConfig:
    """Load configuration from YAML, then apply environment overrides."""
    if config_path is None:
        config_path = os.getenv("LATENCY_MONITOR_CONFIG") or DEFAULT_CONFIG_PATH
    path = Path(config_path)

    with open(path, "r", encoding="utf-8") as f:
        config_data: Any = yaml.safe_load(f) or {}
    if not isinstance(config_data, dict):
        raise ValueError("Config YAML must be a mapping")

    env_overrides = {
        "interval_seconds": os.getenv("LATENCY_MONITOR_INTERVAL"),
        "history_path": os.getenv("LATENCY_MONITOR_HISTORY"),
        "result_log_path": os.getenv("LATENCY_MONITOR_LOG_FILE"),
        "log_level": os.getenv("LOG_LEVEL"),
    }
    for key, value in env_overrides.items():
        if value is None:
            continue
        if key == "interval_seconds":
            config_data[key] = float(value)
        elif key == "result_log_path" and not value.strip():
            # An empty value disables the result log.
            config_data[key] = None
        else:
            config_data[key] = value

    return MonitorConfig(**config_data)
