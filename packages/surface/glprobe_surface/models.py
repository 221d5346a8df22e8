"""Typed models for render-surface launch options and in-page samples."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from glprobe_telemetry.models import from_known_fields, now_stamp


DEFAULT_LAUNCH_ARGS: tuple[str, ...] = (
    "--enable-webgl",
    "--ignore-gpu-blacklist",
    "--enable-gpu-rasterization",
    "--enable-zero-copy",
    "--disable-gpu-sandbox",
)


@dataclass(frozen=True)
class LaunchOptions:
    executable_path: str | None = None
    channel: str | None = None
    headless: bool = False
    args: tuple[str, ...] = DEFAULT_LAUNCH_ARGS
    viewport_width: int = 1200
    viewport_height: int = 800


@dataclass(frozen=True)
class ProtocolCounters:
    """Debug-channel performance counters; metric names pass through unvalidated."""

    timestamp: str
    monotonic: float
    metrics: dict[str, float] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ProtocolCounters":
        return cls(
            timestamp=str(raw.get("timestamp", "")),
            monotonic=float(raw.get("monotonic", 0.0)),
            metrics={str(k): float(v) for k, v in (raw.get("metrics") or {}).items()},
            error=raw.get("error"),
        )


@dataclass(frozen=True)
class FpsSample:
    timestamp: str
    monotonic: float
    fps: float = 0.0
    frame_count: int = 0
    elapsed_ms: float = 0.0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "FpsSample":
        return from_known_fields(cls, raw)


@dataclass(frozen=True)
class HeapMemory:
    timestamp: str
    monotonic: float
    js_heap_size_limit: int = 0
    total_js_heap_size: int = 0
    used_js_heap_size: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "HeapMemory":
        return from_known_fields(cls, raw)


@dataclass(frozen=True)
class WorkloadCounters:
    """Draw-call style counters. ``synthetic=True`` means generated, not measured."""

    timestamp: str
    monotonic: float
    draw_calls: int = 0
    triangle_count: int = 0
    programs_used: int = 0
    textures_used: int = 0
    source: str = "synthetic"
    synthetic: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "WorkloadCounters":
        return from_known_fields(cls, raw)


@dataclass(frozen=True)
class SurfaceSample:
    protocol: ProtocolCounters
    fps: FpsSample
    memory: HeapMemory
    workload: WorkloadCounters

    @classmethod
    def unavailable(cls, reason: str, workload: WorkloadCounters) -> "SurfaceSample":
        ts, mono = now_stamp()
        return cls(
            protocol=ProtocolCounters(timestamp=ts, monotonic=mono, error=reason),
            fps=FpsSample(timestamp=ts, monotonic=mono, error=reason),
            memory=HeapMemory(timestamp=ts, monotonic=mono, error=reason),
            workload=workload,
        )
