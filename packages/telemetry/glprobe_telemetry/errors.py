"""Hardware telemetry errors."""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for hardware source failures."""


class MalformedOutput(TelemetryError):
    """The hardware tool answered but its table had no usable data row."""


class CommandFailed(TelemetryError):
    """The hardware tool could not be run, exited non-zero, or timed out."""

    def __init__(self, argv: list[str], returncode: int, detail: str) -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.detail = detail
        super().__init__(f"{' '.join(self.argv)} failed rc={returncode}: {detail}")
