"""Long-running per-engine utilization monitor (``nvidia-smi dmon``)."""

from __future__ import annotations

import asyncio
import logging

from .models import EngineUtilization
from .nvsmi import DMON_COLUMNS, dmon_argv, parse_dmon_header, parse_dmon_line

logger = logging.getLogger("glprobe.telemetry")


class EngineMonitor:
    """Keeps the latest engine utilization row from a continuous ``dmon`` process.

    ``run()`` is meant to be an independent task for the whole session; ``stop()``
    terminates the process so the task can be joined. ``latest()`` only reports a
    row while the process is alive, so callers fall back once it has exited.
    """

    def __init__(self, command: str = "nvidia-smi", gpu_index: int = 0, argv: list[str] | None = None) -> None:
        self.argv = argv or dmon_argv(command, count=None)
        self.gpu_index = gpu_index
        self.rows_seen = 0
        self.last_error: str | None = None
        self.last_row: EngineUtilization | None = None
        self._columns: tuple[str, ...] = DMON_COLUMNS
        self._live = False
        self._proc: asyncio.subprocess.Process | None = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._live

    def latest(self) -> EngineUtilization | None:
        return self.last_row if self._live else None

    def ingest(self, line: str) -> None:
        header = parse_dmon_header(line)
        if header is not None:
            self._columns = header
            return
        parsed = parse_dmon_line(line, self.gpu_index, self._columns)
        if parsed is not None:
            self.last_row = parsed
            self.rows_seen += 1

    async def run(self) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            self.last_error = str(exc)
            logger.info("engine monitor not started: %s", exc, extra={"event": "engine_monitor_unavailable"})
            return

        self._proc = proc
        self._live = True
        logger.info("engine monitor started", extra={"event": "engine_monitor_started"})
        try:
            if self._stopping:
                return
            assert proc.stdout is not None
            while True:
                raw = await proc.stdout.readline()
                if not raw:
                    break
                self.ingest(raw.decode("utf-8", errors="replace"))
        finally:
            self._live = False
            await self._terminate()
            if proc.returncode not in (0, None) and not self._stopping:
                self.last_error = f"exited rc={proc.returncode}"
            logger.info(
                "engine monitor stopped rows=%d",
                self.rows_seen,
                extra={"event": "engine_monitor_stopped"},
            )

    async def stop(self) -> None:
        self._stopping = True
        await self._terminate()

    async def _terminate(self) -> None:
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=2.0)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
