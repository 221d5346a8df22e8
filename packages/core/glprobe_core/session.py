"""Telemetry session orchestrator: start the surface, sample on a cadence, drain."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

from glprobe_surface import (
    ProtocolError,
    RenderSurfaceController,
    SurfaceMetricsAdapter,
    SurfaceSample,
    SyntheticWorkloadSource,
    TraceRecorder,
    WorkloadSource,
    capture_gpu_features,
)
from glprobe_telemetry import ClockSample, EngineMonitor, HardwareSampler, HostSample, HostSampler

from .config import SIGNAL, AppConfig
from .dataset import Dataset, SessionBuffers, SessionInfo, merge
from .logging_setup import get_logger

logger = get_logger("session")


class SessionState(str, Enum):
    IDLE = "Idle"
    STARTING = "Starting"
    SAMPLING = "Sampling"
    DRAINING = "Draining"
    DONE = "Done"
    ABORTED = "Aborted"


@dataclass
class SessionStatus:
    state: SessionState = SessionState.IDLE
    iterations: int = 0
    degraded_ticks: int = 0
    started_at: str | None = None
    completed_by: str | None = None
    last_error: str | None = None


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class TelemetrySession:
    """Runs one sampling session against a single, exclusively owned render surface.

    Each tick fans out the hardware sample, the in-surface sample and (under the
    signal policy) the completion-flag read as independent tasks and waits for all
    of them. A sub-source failure degrades its field for that tick; only surface
    setup failures end the session early.
    """

    def __init__(
        self,
        cfg: AppConfig,
        controller: Any | None = None,
        hardware: HardwareSampler | None = None,
        host: HostSampler | None = None,
        workload: WorkloadSource | None = None,
        engine_monitor: EngineMonitor | None = None,
    ) -> None:
        self.cfg = cfg
        hw = cfg.hardware
        self._controller = controller or RenderSurfaceController(cfg.browser.launch_options())
        if engine_monitor is None and hw.enabled and hw.engine_monitor and hardware is None:
            engine_monitor = EngineMonitor(command=hw.command, gpu_index=hw.gpu_index)
        self._monitor = engine_monitor
        self._monitor_joined = False
        if hardware is None and hw.enabled:
            hardware = HardwareSampler(
                command=hw.command,
                timeout_s=cfg.timeouts.hardware_ms / 1000,
                gpu_index=hw.gpu_index,
                engine_source=(engine_monitor.latest if engine_monitor is not None else None),
            )
        self._hardware = hardware
        self._host = host or HostSampler()
        self._workload = workload or SyntheticWorkloadSource()

        self.buffers = SessionBuffers()
        self.gpu_features: dict[str, str] = {}
        self.trace_events: list[dict[str, Any]] = []
        self._status = SessionStatus()
        self._events: list[dict[str, Any]] = []
        self._cancel = asyncio.Event()

    @property
    def status(self) -> SessionStatus:
        return self._status

    def recent_events(self, limit: int = 200) -> list[dict[str, Any]]:
        return self._events[-limit:]

    def cancel(self) -> None:
        """Request a stop; honored between ticks, in-flight calls get the grace period."""
        if not self._cancel.is_set():
            self._log_event("cancel_requested")
        self._cancel.set()

    def _log_event(self, event: str, **fields: Any) -> None:
        row = {"ts_utc": _utc_now(), "event": event, "state": self._status.state.value}
        row.update(fields)
        self._events.append(row)
        if len(self._events) > 1000:
            self._events = self._events[-1000:]
        extra = {"event": event, "state": self._status.state.value}
        if "iteration" in fields:
            extra["iteration"] = fields["iteration"]
        logger.info("%s %s", event, " ".join(f"{k}={v}" for k, v in fields.items()), extra=extra)

    def _set_state(self, state: SessionState) -> None:
        self._status.state = state
        self._log_event("state", to=state.value)

    def _abort(self, exc: BaseException) -> None:
        self._status.last_error = str(exc)
        self._status.state = SessionState.ABORTED
        self._log_event("aborted", error=str(exc), error_type=type(exc).__name__)

    async def run(self) -> Dataset:
        self._status.started_at = _utc_now()
        surface = await self._start()
        adapter = SurfaceMetricsAdapter(
            surface,
            workload=self._workload,
            fps_window_ms=self.cfg.timeouts.fps_window_ms,
            fps_timeout_s=self.cfg.timeouts.fps_timeout_ms / 1000,
            call_timeout_s=self.cfg.timeouts.call_ms / 1000,
            completion_expression=self.cfg.session.completion_expression,
        )

        monitor_task = asyncio.create_task(self._monitor.run()) if self._monitor is not None else None
        try:
            gpu_info = await adapter.gpu_info()
            self.trace_events = await self._capture_trace(surface)
            self._set_state(SessionState.SAMPLING)
            await self._sample_loop(adapter)

            self._set_state(SessionState.DRAINING)
            await self._stop_monitor(monitor_task)
            dataset = merge(self.buffers, self._session_info(gpu_info))
        except BaseException as exc:
            self._abort(exc)
            raise
        finally:
            await self._stop_monitor(monitor_task)
            await self._release(surface)

        self._set_state(SessionState.DONE)
        return dataset

    async def _start(self):
        self._set_state(SessionState.STARTING)
        try:
            surface = await self._controller.open()
        except BaseException as exc:
            self._abort(exc)
            raise

        try:
            if self.cfg.browser.clear_data:
                try:
                    await surface.clear_browsing_data()
                except ProtocolError as exc:
                    logger.warning("clearing browsing data failed: %s", exc, extra={"event": "clear_data_failed"})
            try:
                await surface.enable_performance()
            except ProtocolError as exc:
                logger.warning("protocol channel not enabled: %s", exc, extra={"event": "protocol_enable_failed"})
            if self.cfg.browser.capture_gpu_features:
                self.gpu_features = await capture_gpu_features(
                    surface, self.cfg.timeouts.navigation_ms, self.cfg.timeouts.call_ms / 1000
                )
            self._log_event("navigate", url=self.cfg.session.target_url)
            await surface.navigate(self.cfg.session.target_url, timeout_ms=self.cfg.timeouts.navigation_ms)
        except BaseException as exc:
            self._abort(exc)
            await asyncio.shield(self._release(surface))
            raise
        return surface

    async def _capture_trace(self, surface) -> list[dict[str, Any]]:
        """Trace the loaded page for ``trace_ms`` before sampling; failures only log."""
        trace_ms = self.cfg.session.trace_ms
        if trace_ms <= 0:
            return []
        recorder = TraceRecorder(surface.debug_channel, complete_timeout_s=self.cfg.timeouts.trace_complete_ms / 1000)
        try:
            await recorder.start()
            self._log_event("trace_started", duration_ms=trace_ms)
            await self._sleep(trace_ms / 1000)
            events = await recorder.stop()
        except ProtocolError as exc:
            logger.warning("trace capture failed: %s", exc, extra={"event": "trace_failed"})
            return []
        self._log_event("trace_captured", events=len(events), completed=recorder.completed)
        return events

    async def _sample_loop(self, adapter: SurfaceMetricsAdapter) -> None:
        session = self.cfg.session
        signal_policy = session.policy == SIGNAL
        cap = session.max_iterations if signal_policy and session.max_iterations > 0 else None
        cadence_s = session.cadence_ms / 1000

        while True:
            if self._cancel.is_set():
                self._status.completed_by = "cancelled"
                return

            tick_start = time.monotonic()
            flag = await self._tick(adapter, signal_policy)
            self._status.iterations += 1
            n = self._status.iterations

            if self._cancel.is_set():
                self._status.completed_by = "cancelled"
                return
            if signal_policy and flag:
                self._status.completed_by = "signal"
                self._log_event("completion_signal", iteration=n)
                return
            if not signal_policy and n >= int(session.sample_count):
                self._status.completed_by = "count"
                return
            if cap is not None and n >= cap:
                self._status.completed_by = "max_iterations"
                return

            await self._sleep(cadence_s - (time.monotonic() - tick_start))

    async def _sleep(self, seconds: float) -> None:
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._cancel.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _sample_hardware(self) -> ClockSample:
        if self._hardware is None:
            return ClockSample.unavailable("hardware sampling disabled")
        return await self._hardware.sample()

    async def _tick(self, adapter: SurfaceMetricsAdapter, signal_policy: bool) -> bool:
        host = self._sample_host()
        hardware_task = asyncio.create_task(self._sample_hardware())
        surface_task = asyncio.create_task(adapter.sample())
        flag_task = asyncio.create_task(adapter.completion_flag()) if signal_policy else None

        await self._join([t for t in (hardware_task, surface_task, flag_task) if t is not None])

        hardware = self._result(hardware_task, lambda reason: ClockSample.unavailable(reason))
        surface = self._result(surface_task, lambda reason: SurfaceSample.unavailable(reason, adapter.workload()))
        flag = bool(self._result(flag_task, lambda _reason: False)) if flag_task is not None else False

        self.buffers.append_tick(hardware, surface, host)
        degraded = (not hardware.available) or any(
            part.error for part in (surface.protocol, surface.fps, surface.memory)
        )
        if degraded:
            self._status.degraded_ticks += 1
        self._log_event(
            "tick",
            iteration=self._status.iterations + 1,
            fps=round(surface.fps.fps, 1),
            gpu_available=hardware.available,
            degraded=degraded,
        )
        return flag

    def _sample_host(self) -> HostSample:
        return self._host.sample()

    async def _join(self, tasks: list[asyncio.Task]) -> None:
        """Barrier over one tick's sub-tasks.

        Once cancellation is requested, stragglers get ``grace_ms`` and are then
        cancelled; their fields are recorded as unavailable by the caller.
        """
        cancel_wait = asyncio.create_task(self._cancel.wait())
        pending: set[asyncio.Task] = set(tasks)
        try:
            while pending:
                done, waiting = await asyncio.wait(pending | {cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
                pending = {t for t in waiting if t is not cancel_wait}
                if cancel_wait in done:
                    break
            if pending:
                _, pending = await asyncio.wait(pending, timeout=self.cfg.timeouts.grace_ms / 1000)
                for task in pending:
                    task.cancel()
                if pending:
                    self._log_event("abandoned_calls", count=len(pending))
                    await asyncio.gather(*pending, return_exceptions=True)
        finally:
            cancel_wait.cancel()

    def _result(self, task: asyncio.Task, fallback: Callable[[str], Any]) -> Any:
        if task.cancelled():
            return fallback("cancelled")
        exc = task.exception()
        if exc is not None:
            logger.error(
                "sub-call failed unexpectedly: %s",
                exc,
                exc_info=(type(exc), exc, exc.__traceback__),
                extra={"event": "subcall_failed"},
            )
            return fallback(str(exc) or type(exc).__name__)
        return task.result()

    async def _stop_monitor(self, task: "asyncio.Task[None] | None") -> None:
        if task is None or self._monitor is None or self._monitor_joined:
            return
        self._monitor_joined = True
        if not task.done():
            await self._monitor.stop()
            done, _ = await asyncio.wait({task}, timeout=self.cfg.timeouts.grace_ms / 1000 + 2.0)
            if not done:
                task.cancel()
        (outcome,) = await asyncio.gather(task, return_exceptions=True)
        if isinstance(outcome, Exception):
            logger.warning(
                "engine monitor failed: %s",
                outcome,
                exc_info=(type(outcome), outcome, outcome.__traceback__),
                extra={"event": "engine_monitor_failed"},
            )

    async def _release(self, surface) -> None:
        close: Callable[[], Awaitable[None]] | None = getattr(surface, "close", None)
        if close is None:
            return
        try:
            await close()
        except Exception as exc:
            logger.warning("render surface close failed: %s", exc, extra={"event": "surface_close_failed"})

    def _session_info(self, gpu_info: dict[str, Any]) -> SessionInfo:
        s = self.cfg.session
        return SessionInfo(
            target_url=s.target_url,
            started_at=self._status.started_at or "",
            finished_at=_utc_now(),
            cadence_ms=s.cadence_ms,
            policy=s.policy,
            sample_count=s.sample_count,
            iterations=self._status.iterations,
            completed_by=self._status.completed_by or "",
            workload_source=self._workload.kind,
            gpu_info=gpu_info,
            gpu_features=self.gpu_features,
            trace_events=len(self.trace_events),
        )
