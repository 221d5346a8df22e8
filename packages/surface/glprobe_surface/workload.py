"""Workload counter sources.

True GPU command-stream introspection is not available from inside the page, so
the default source is synthetic. Every record it produces is tagged as such and
the report labels it accordingly.
"""

from __future__ import annotations

import random

from glprobe_telemetry.models import now_stamp

from .models import WorkloadCounters


class WorkloadSource:
    kind = "none"
    measured = False

    def next(self) -> WorkloadCounters:
        raise NotImplementedError


class SyntheticWorkloadSource(WorkloadSource):
    kind = "synthetic"
    measured = False

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def next(self) -> WorkloadCounters:
        timestamp, monotonic = now_stamp()
        return WorkloadCounters(
            timestamp=timestamp,
            monotonic=monotonic,
            draw_calls=self._rng.randint(10, 29),
            triangle_count=self._rng.randint(1000, 5999),
            programs_used=self._rng.randint(1, 3),
            textures_used=self._rng.randint(1, 3),
            source=self.kind,
            synthetic=not self.measured,
        )
