"""Hardware and host samplers with per-group graceful degradation."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import psutil

from .errors import TelemetryError
from .models import (
    ClockFrequencies,
    ClockSample,
    EngineUtilization,
    HostSample,
    PowerReadings,
    Utilization,
    now_stamp,
)
from .nvsmi import (
    CLOCKS_QUERY,
    POWER_QUERY,
    UTILIZATION_QUERY,
    CommandResult,
    dmon_argv,
    parse_clocks,
    parse_dmon,
    parse_power,
    parse_utilization,
    query_argv,
    require_ok,
    run_command,
)

Runner = Callable[[list[str], float], Awaitable[CommandResult]]
EngineSource = Callable[[], "EngineUtilization | None"]

logger = logging.getLogger("glprobe.telemetry")

_REQUIRED_GROUPS = ("clocks", "utilization", "power")


class HardwareSampler:
    """Samples clocks, utilization, power and engine load from the hardware tool.

    A failed group is recorded as zeros plus an entry in ``errors``; when every
    required group fails the tick becomes the unavailable marker. Engine load is
    best-effort and never affects availability.
    """

    def __init__(
        self,
        command: str = "nvidia-smi",
        timeout_s: float = 5.0,
        gpu_index: int = 0,
        engine_source: EngineSource | None = None,
        runner: Runner | None = None,
    ) -> None:
        self.command = command
        self.timeout_s = timeout_s
        self.gpu_index = gpu_index
        self.engine_source = engine_source
        self._runner = runner or run_command
        self._last_errors: dict[str, str] = {}

    async def _query(self, argv: list[str], parser):
        result = await self._runner(argv, self.timeout_s)
        return parser(require_ok(argv, result), self.gpu_index)

    async def _engines(self) -> EngineUtilization:
        if self.engine_source is not None:
            latest = self.engine_source()
            if latest is not None:
                return latest
        return await self._query(dmon_argv(self.command, count=1), parse_dmon)

    def _note_failure(self, group: str, reason: str) -> None:
        # Only log when a group's failure reason changes; an absent tool would otherwise log every tick.
        if self._last_errors.get(group) != reason:
            logger.warning(
                "hardware group %s unavailable: %s",
                group,
                reason,
                extra={"event": "hardware_group_unavailable", "group": group},
            )
        self._last_errors[group] = reason

    async def sample(self) -> ClockSample:
        timestamp, monotonic = now_stamp()
        results = await asyncio.gather(
            self._query(query_argv(self.command, CLOCKS_QUERY), parse_clocks),
            self._query(query_argv(self.command, UTILIZATION_QUERY), parse_utilization),
            self._query(query_argv(self.command, POWER_QUERY), parse_power),
            self._engines(),
            return_exceptions=True,
        )

        defaults = {
            "clocks": ClockFrequencies(),
            "utilization": Utilization(),
            "power": PowerReadings(),
            "engines": EngineUtilization(),
        }
        values: dict[str, object] = {}
        errors: dict[str, str] = {}
        for group, value in zip(("clocks", "utilization", "power", "engines"), results):
            if isinstance(value, TelemetryError):
                errors[group] = str(value)
                self._note_failure(group, str(value))
                values[group] = defaults[group]
            elif isinstance(value, BaseException):
                raise value
            else:
                self._last_errors.pop(group, None)
                values[group] = value

        available = any(group not in errors for group in _REQUIRED_GROUPS)
        return ClockSample(
            timestamp=timestamp,
            monotonic=monotonic,
            clocks=values["clocks"],
            utilization=values["utilization"],
            engines=values["engines"],
            power=values["power"],
            available=available,
            errors=errors,
        )


class HostSampler:
    """Host CPU/memory plus this process's RSS, normalized like the hardware samples."""

    def __init__(self) -> None:
        self._process = psutil.Process()
        # Prime non-blocking CPU measurement.
        psutil.cpu_percent(interval=None)

    def sample(self) -> HostSample:
        timestamp, monotonic = now_stamp()
        try:
            cpu = float(psutil.cpu_percent(interval=None))
            vm = psutil.virtual_memory()
            rss = float(self._process.memory_info().rss)
        except (psutil.Error, OSError) as exc:
            return HostSample(timestamp=timestamp, monotonic=monotonic, error=str(exc))
        return HostSample(
            timestamp=timestamp,
            monotonic=monotonic,
            cpu_percent=cpu,
            memory_used_gb=vm.used / (1024**3),
            memory_percent=float(vm.percent),
            process_rss_mb=rss / (1024 * 1024),
        )
