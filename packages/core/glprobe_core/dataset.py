"""Session buffers, positional merge, and self-describing JSON persistence."""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from glprobe_surface.models import FpsSample, HeapMemory, ProtocolCounters, SurfaceSample, WorkloadCounters
from glprobe_telemetry.models import ClockSample, HostSample

from .errors import PersistError


SCHEMA_VERSION = 1
HARDWARE_KIND = "hardware"
SURFACE_KIND = "surface"


@dataclass
class SessionInfo:
    target_url: str = ""
    started_at: str = ""
    finished_at: str = ""
    cadence_ms: int = 0
    policy: str = "signal"
    sample_count: int | str = "signal"
    iterations: int = 0
    completed_by: str = ""
    workload_source: str = "synthetic"
    gpu_info: dict[str, Any] = field(default_factory=dict)
    gpu_features: dict[str, str] = field(default_factory=dict)
    trace_events: int = 0

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> "SessionInfo":
        raw = raw or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in raw.items() if k in known})


@dataclass
class SessionBuffers:
    """One ordered sequence per source; every tick appends to all of them."""

    hardware: list[ClockSample] = field(default_factory=list)
    protocol: list[ProtocolCounters] = field(default_factory=list)
    fps: list[FpsSample] = field(default_factory=list)
    memory: list[HeapMemory] = field(default_factory=list)
    workload: list[WorkloadCounters] = field(default_factory=list)
    host: list[HostSample] = field(default_factory=list)

    def append_tick(self, hardware: ClockSample, surface: SurfaceSample, host: HostSample) -> None:
        self.hardware.append(hardware)
        self.protocol.append(surface.protocol)
        self.fps.append(surface.fps)
        self.memory.append(surface.memory)
        self.workload.append(surface.workload)
        self.host.append(host)

    def lengths(self) -> dict[str, int]:
        return {f.name: len(getattr(self, f.name)) for f in fields(self)}


@dataclass
class Dataset:
    session: SessionInfo
    hardware: list[ClockSample] = field(default_factory=list)
    protocol: list[ProtocolCounters] = field(default_factory=list)
    fps: list[FpsSample] = field(default_factory=list)
    memory: list[HeapMemory] = field(default_factory=list)
    workload: list[WorkloadCounters] = field(default_factory=list)
    host: list[HostSample] = field(default_factory=list)
    timestamp: str = ""

    def lengths(self) -> dict[str, int]:
        return {
            "hardware": len(self.hardware),
            "protocol": len(self.protocol),
            "fps": len(self.fps),
            "memory": len(self.memory),
            "workload": len(self.workload),
            "host": len(self.host),
        }


@dataclass(frozen=True)
class ArtifactPaths:
    hardware: Path
    surface: Path


def merge(buffers: SessionBuffers, info: SessionInfo, timestamp: str | None = None) -> Dataset:
    """Positional concatenation only; sources are never joined on timestamps."""
    return Dataset(
        session=info,
        hardware=list(buffers.hardware),
        protocol=list(buffers.protocol),
        fps=list(buffers.fps),
        memory=list(buffers.memory),
        workload=list(buffers.workload),
        host=list(buffers.host),
        timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
    )


def hardware_payload(dataset: Dataset) -> dict[str, Any]:
    return {
        "schema_version": SCHEMA_VERSION,
        "kind": HARDWARE_KIND,
        "samples": [s.to_dict() for s in dataset.hardware],
    }


def surface_payload(dataset: Dataset) -> dict[str, Any]:
    return {
        "schema_version": SCHEMA_VERSION,
        "kind": SURFACE_KIND,
        "session": asdict(dataset.session),
        "timestamp": dataset.timestamp,
        "performance_samples": [s.to_dict() for s in dataset.protocol],
        "fps_samples": [s.to_dict() for s in dataset.fps],
        "memory_samples": [s.to_dict() for s in dataset.memory],
        "workload_samples": [s.to_dict() for s in dataset.workload],
        "host_samples": [s.to_dict() for s in dataset.host],
    }


def artifact_paths(
    directory: Path,
    hardware_file: str = "gpu-metrics.json",
    surface_file: str = "cpu-metrics.json",
) -> ArtifactPaths:
    return ArtifactPaths(hardware=Path(directory) / hardware_file, surface=Path(directory) / surface_file)


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, ensure_ascii=False)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp)
        raise


def persist(
    dataset: Dataset,
    directory: Path,
    hardware_file: str = "gpu-metrics.json",
    surface_file: str = "cpu-metrics.json",
) -> ArtifactPaths:
    paths = artifact_paths(directory, hardware_file, surface_file)
    try:
        _atomic_write_json(paths.hardware, hardware_payload(dataset))
        _atomic_write_json(paths.surface, surface_payload(dataset))
    except (OSError, TypeError, ValueError) as exc:
        raise PersistError(f"could not write session artifacts to {directory}: {exc}") from exc
    return paths


def _read_json(path: Path, kind: str) -> dict[str, Any]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise PersistError(f"could not read {path}: {exc}") from exc
    if not isinstance(raw, dict) or raw.get("kind") != kind:
        raise PersistError(f"{path} is not a {kind} artifact")
    return raw


def load_dataset(
    directory: Path,
    hardware_file: str = "gpu-metrics.json",
    surface_file: str = "cpu-metrics.json",
) -> Dataset:
    paths = artifact_paths(directory, hardware_file, surface_file)
    hw = _read_json(paths.hardware, HARDWARE_KIND)
    sf = _read_json(paths.surface, SURFACE_KIND)
    return Dataset(
        session=SessionInfo.from_dict(sf.get("session")),
        hardware=[ClockSample.from_dict(s) for s in hw.get("samples") or []],
        protocol=[ProtocolCounters.from_dict(s) for s in sf.get("performance_samples") or []],
        fps=[FpsSample.from_dict(s) for s in sf.get("fps_samples") or []],
        memory=[HeapMemory.from_dict(s) for s in sf.get("memory_samples") or []],
        workload=[WorkloadCounters.from_dict(s) for s in sf.get("workload_samples") or []],
        host=[HostSample.from_dict(s) for s in sf.get("host_samples") or []],
        timestamp=str(sf.get("timestamp", "")),
    )


def persist_trace(events: list[dict[str, Any]], directory: Path, trace_file: str = "webgl-trace.json") -> Path:
    """Write captured trace events in the ``{"traceEvents": [...]}`` layout trace viewers load."""
    path = Path(directory) / trace_file
    try:
        _atomic_write_json(path, {"traceEvents": events})
    except (OSError, TypeError, ValueError) as exc:
        raise PersistError(f"could not write trace to {path}: {exc}") from exc
    return path
