"""Typed hardware telemetry models."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any


def now_stamp() -> tuple[str, float]:
    """Return (UTC ISO wall-clock, monotonic seconds) for a new sample."""
    return datetime.now(timezone.utc).isoformat(), time.monotonic()


def from_known_fields(cls, raw: dict[str, Any] | None):
    """Build dataclass ``cls`` from ``raw``, dropping keys it does not declare."""
    raw = raw or {}
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in raw.items() if k in known})


@dataclass(frozen=True)
class ClockFrequencies:
    graphics_mhz: int = 0
    memory_mhz: int = 0
    sm_mhz: int = 0


@dataclass(frozen=True)
class Utilization:
    gpu_percent: int = 0
    memory_percent: int = 0
    memory_total_mib: int = 0
    memory_free_mib: int = 0
    memory_used_mib: int = 0


@dataclass(frozen=True)
class EngineUtilization:
    sm: float = 0.0
    mem: float = 0.0
    enc: float = 0.0
    dec: float = 0.0
    jpg: float = 0.0
    ofa: float = 0.0


@dataclass(frozen=True)
class PowerReadings:
    draw_w: float = 0.0
    limit_w: float = 0.0
    default_limit_w: float = 0.0
    min_limit_w: float = 0.0
    max_limit_w: float = 0.0


@dataclass(frozen=True)
class ClockSample:
    """One hardware tick. ``available=False`` marks a tick the tool could not serve."""

    timestamp: str
    monotonic: float
    clocks: ClockFrequencies = field(default_factory=ClockFrequencies)
    utilization: Utilization = field(default_factory=Utilization)
    engines: EngineUtilization = field(default_factory=EngineUtilization)
    power: PowerReadings = field(default_factory=PowerReadings)
    available: bool = True
    errors: dict[str, str] = field(default_factory=dict)

    @classmethod
    def unavailable(cls, reason: str, timestamp: str | None = None, monotonic: float | None = None) -> "ClockSample":
        ts, mono = now_stamp()
        return cls(
            timestamp=timestamp or ts,
            monotonic=mono if monotonic is None else monotonic,
            available=False,
            errors={"sample": reason},
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ClockSample":
        return cls(
            timestamp=str(raw.get("timestamp", "")),
            monotonic=float(raw.get("monotonic", 0.0)),
            clocks=from_known_fields(ClockFrequencies, raw.get("clocks")),
            utilization=from_known_fields(Utilization, raw.get("utilization")),
            engines=from_known_fields(EngineUtilization, raw.get("engines")),
            power=from_known_fields(PowerReadings, raw.get("power")),
            available=bool(raw.get("available", True)),
            errors=dict(raw.get("errors") or {}),
        )


@dataclass(frozen=True)
class HostSample:
    timestamp: str
    monotonic: float
    cpu_percent: float = 0.0
    memory_used_gb: float = 0.0
    memory_percent: float = 0.0
    process_rss_mb: float = 0.0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "HostSample":
        return from_known_fields(cls, raw)
