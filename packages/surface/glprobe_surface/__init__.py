"""Render-surface control and in-page metrics for glprobe."""

from .adapter import SurfaceMetricsAdapter, capture_gpu_features, flatten_metrics
from .controller import RenderSurfaceController, SurfaceSession, default_executable_path
from .errors import EvalError, LaunchError, NavigationTimeout, ProtocolError, SurfaceError
from .models import (
    DEFAULT_LAUNCH_ARGS,
    FpsSample,
    HeapMemory,
    LaunchOptions,
    ProtocolCounters,
    SurfaceSample,
    WorkloadCounters,
)
from .tracing import TraceRecorder
from .workload import SyntheticWorkloadSource, WorkloadSource

__all__ = [
    "DEFAULT_LAUNCH_ARGS",
    "EvalError",
    "FpsSample",
    "HeapMemory",
    "LaunchError",
    "LaunchOptions",
    "NavigationTimeout",
    "ProtocolCounters",
    "ProtocolError",
    "RenderSurfaceController",
    "SurfaceError",
    "SurfaceMetricsAdapter",
    "SurfaceSample",
    "SurfaceSession",
    "SyntheticWorkloadSource",
    "TraceRecorder",
    "WorkloadCounters",
    "WorkloadSource",
    "capture_gpu_features",
    "default_executable_path",
    "flatten_metrics",
]
