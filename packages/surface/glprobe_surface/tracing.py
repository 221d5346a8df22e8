"""Protocol-level trace capture (gpu and timeline categories) over the debug channel."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

logger = logging.getLogger("glprobe.surface")

TRACE_CATEGORIES = "gpu,blink.user_timing,devtools.timeline,disabled-by-default-devtools.timeline"
TRACE_OPTIONS = "sampling-frequency=10000"

DATA_EVENT = "Tracing.dataCollected"
COMPLETE_EVENT = "Tracing.tracingComplete"


class TraceRecorder:
    """Collects trace events between :meth:`start` and :meth:`stop`.

    Listeners are attached before ``Tracing.start`` so no chunk emitted after
    ``Tracing.end`` can be missed. ``stop`` waits for ``tracingComplete`` up to
    ``complete_timeout_s`` and then returns whatever arrived.
    """

    def __init__(
        self,
        channel: Any,
        categories: str = TRACE_CATEGORIES,
        complete_timeout_s: float = 10.0,
    ) -> None:
        self.channel = channel
        self.categories = categories
        self.complete_timeout_s = complete_timeout_s
        self.events: list[dict[str, Any]] = []
        self.completed = False
        self._complete = asyncio.Event()
        self._attached = False

    def _on_data(self, params: dict[str, Any] | None) -> None:
        chunk = (params or {}).get("value") or []
        self.events.extend(e for e in chunk if isinstance(e, dict))

    def _on_complete(self, _params: dict[str, Any] | None = None) -> None:
        self._complete.set()

    def _detach(self) -> None:
        if not self._attached:
            return
        self._attached = False
        self.channel.remove_listener(DATA_EVENT, self._on_data)
        self.channel.remove_listener(COMPLETE_EVENT, self._on_complete)

    async def start(self) -> None:
        self.channel.on(DATA_EVENT, self._on_data)
        self.channel.on(COMPLETE_EVENT, self._on_complete)
        self._attached = True
        try:
            await self.channel.send("Tracing.start", {"categories": self.categories, "options": TRACE_OPTIONS})
        except BaseException:
            self._detach()
            raise

    async def stop(self) -> list[dict[str, Any]]:
        try:
            await self.channel.send("Tracing.end")
            try:
                await asyncio.wait_for(self._complete.wait(), timeout=self.complete_timeout_s)
                self.completed = True
            except asyncio.TimeoutError:
                logger.warning(
                    "trace not completed within %.1fs; keeping %d events",
                    self.complete_timeout_s,
                    len(self.events),
                    extra={"event": "trace_incomplete"},
                )
        finally:
            self._detach()
        return self.events
