"""Hardware telemetry sources for glprobe."""

from .errors import CommandFailed, MalformedOutput, TelemetryError
from .models import (
    ClockFrequencies,
    ClockSample,
    EngineUtilization,
    HostSample,
    PowerReadings,
    Utilization,
)
from .monitor import EngineMonitor
from .provider import HardwareSampler, HostSampler

__all__ = [
    "ClockFrequencies",
    "ClockSample",
    "CommandFailed",
    "EngineMonitor",
    "EngineUtilization",
    "HardwareSampler",
    "HostSampler",
    "HostSample",
    "MalformedOutput",
    "PowerReadings",
    "TelemetryError",
    "Utilization",
]
