"""In-surface metrics adapter: protocol counters, fps, heap memory, workload."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from glprobe_telemetry.models import now_stamp

from .errors import EvalError, ProtocolError, SurfaceError
from .models import FpsSample, HeapMemory, ProtocolCounters, SurfaceSample, WorkloadCounters
from .scripts import (
    FPS_SCRIPT,
    GPU_FEATURES_SCRIPT,
    GPU_INFO_SCRIPT,
    GPU_PAGE_URL,
    MEMORY_SCRIPT,
    completion_script,
)
from .workload import SyntheticWorkloadSource, WorkloadSource

logger = logging.getLogger("glprobe.surface")

TIMEOUT = "timeout"
DEFAULT_COMPLETION_EXPRESSION = "window.operationComplete === true"


def flatten_metrics(result: dict[str, Any] | None) -> dict[str, float]:
    """``{"metrics": [{"name", "value"}, ...]}`` to a flat mapping. Unknown names pass through."""
    out: dict[str, float] = {}
    for item in (result or {}).get("metrics") or []:
        name = item.get("name")
        value = item.get("value")
        if isinstance(name, str) and isinstance(value, (int, float)) and not isinstance(value, bool):
            out[name] = float(value)
    return out


class SurfaceMetricsAdapter:
    """Produces one :class:`SurfaceSample` per call from an open surface session.

    Every sub-call is bounded; a failure or timeout degrades only its own field.
    """

    def __init__(
        self,
        session: Any,
        workload: WorkloadSource | None = None,
        fps_window_ms: int = 1000,
        fps_timeout_s: float = 3.0,
        call_timeout_s: float = 2.0,
        completion_expression: str = DEFAULT_COMPLETION_EXPRESSION,
    ) -> None:
        self.session = session
        self.workload_source = workload or SyntheticWorkloadSource()
        self.fps_window_ms = fps_window_ms
        self.fps_timeout_s = fps_timeout_s
        self.call_timeout_s = call_timeout_s
        self.completion_expression = completion_expression

    async def protocol_counters(self) -> ProtocolCounters:
        timestamp, monotonic = now_stamp()
        try:
            result = await asyncio.wait_for(
                self.session.debug_channel.send("Performance.getMetrics"),
                timeout=self.call_timeout_s,
            )
        except asyncio.TimeoutError:
            return ProtocolCounters(timestamp=timestamp, monotonic=monotonic, error=TIMEOUT)
        except ProtocolError as exc:
            logger.warning("protocol counters failed: %s", exc, extra={"event": "protocol_degraded"})
            return ProtocolCounters(timestamp=timestamp, monotonic=monotonic, error=str(exc))
        return ProtocolCounters(timestamp=timestamp, monotonic=monotonic, metrics=flatten_metrics(result))

    async def measure_fps(self) -> FpsSample:
        timestamp, monotonic = now_stamp()
        try:
            raw = await asyncio.wait_for(
                self.session.exec(FPS_SCRIPT, self.fps_window_ms),
                timeout=self.fps_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "fps measurement exceeded %.1fs",
                self.fps_timeout_s,
                extra={"event": "fps_timeout"},
            )
            return FpsSample(timestamp=timestamp, monotonic=monotonic, fps=0.0, error=TIMEOUT)
        except EvalError as exc:
            return FpsSample(timestamp=timestamp, monotonic=monotonic, fps=0.0, error=str(exc))

        if not isinstance(raw, dict):
            return FpsSample(timestamp=timestamp, monotonic=monotonic, error="unexpected fps result")
        return FpsSample(
            timestamp=timestamp,
            monotonic=monotonic,
            fps=float(raw.get("fps") or 0.0),
            frame_count=int(raw.get("frameCount") or 0),
            elapsed_ms=float(raw.get("elapsed") or 0.0),
        )

    async def heap_memory(self) -> HeapMemory:
        timestamp, monotonic = now_stamp()
        try:
            raw = await asyncio.wait_for(self.session.exec(MEMORY_SCRIPT), timeout=self.call_timeout_s)
        except asyncio.TimeoutError:
            return HeapMemory(timestamp=timestamp, monotonic=monotonic, error=TIMEOUT)
        except EvalError as exc:
            return HeapMemory(timestamp=timestamp, monotonic=monotonic, error=str(exc))

        if not isinstance(raw, dict):
            return HeapMemory(timestamp=timestamp, monotonic=monotonic, error="unexpected memory result")
        if raw.get("error"):
            return HeapMemory(timestamp=timestamp, monotonic=monotonic, error=str(raw["error"]))
        return HeapMemory(
            timestamp=timestamp,
            monotonic=monotonic,
            js_heap_size_limit=int(raw.get("jsHeapSizeLimit") or 0),
            total_js_heap_size=int(raw.get("totalJSHeapSize") or 0),
            used_js_heap_size=int(raw.get("usedJSHeapSize") or 0),
        )

    def workload(self) -> WorkloadCounters:
        return self.workload_source.next()

    async def completion_flag(self) -> bool:
        try:
            value = await asyncio.wait_for(
                self.session.exec(completion_script(self.completion_expression)),
                timeout=self.call_timeout_s,
            )
        except (asyncio.TimeoutError, EvalError):
            return False
        return value is True

    async def gpu_info(self) -> dict[str, Any]:
        try:
            raw = await asyncio.wait_for(self.session.exec(GPU_INFO_SCRIPT), timeout=self.call_timeout_s)
        except asyncio.TimeoutError:
            return {"error": TIMEOUT}
        except EvalError as exc:
            return {"error": str(exc)}
        return raw if isinstance(raw, dict) else {"error": "unexpected gpu info result"}

    async def sample(self) -> SurfaceSample:
        protocol, fps, memory = await asyncio.gather(
            self.protocol_counters(),
            self.measure_fps(),
            self.heap_memory(),
        )
        return SurfaceSample(protocol=protocol, fps=fps, memory=memory, workload=self.workload())


async def capture_gpu_features(session: Any, navigation_timeout_ms: int, call_timeout_s: float = 2.0) -> dict[str, str]:
    """Feature-status table from the browser's gpu page, or ``{"error": ...}``.

    Leaves the page on the gpu page; the caller navigates to its target afterwards.
    """
    try:
        await session.navigate(GPU_PAGE_URL, timeout_ms=navigation_timeout_ms)
        raw = await asyncio.wait_for(session.exec(GPU_FEATURES_SCRIPT), timeout=call_timeout_s)
    except asyncio.TimeoutError:
        return {"error": TIMEOUT}
    except SurfaceError as exc:
        logger.warning("gpu feature table unavailable: %s", exc, extra={"event": "gpu_features_failed"})
        return {"error": str(exc)}
    if not isinstance(raw, dict):
        return {"error": "unexpected gpu feature result"}
    return {str(k): str(v) for k, v in raw.items()}
