"""Error taxonomy shared by the session, persistence and serving stages."""

from __future__ import annotations

from glprobe_surface.errors import EvalError, LaunchError, NavigationTimeout, ProtocolError, SurfaceError
from glprobe_telemetry.errors import CommandFailed, MalformedOutput, TelemetryError


class PersistError(Exception):
    """The session dataset could not be written or read back."""


class ServerBindError(Exception):
    """The result server could not bind its address; collected data stays valid."""


# Errors that end a run; everything else degrades a field for one tick.
FATAL_SESSION_ERRORS: tuple[type[Exception], ...] = (LaunchError, NavigationTimeout, PersistError)

__all__ = [
    "CommandFailed",
    "EvalError",
    "FATAL_SESSION_ERRORS",
    "LaunchError",
    "MalformedOutput",
    "NavigationTimeout",
    "PersistError",
    "ProtocolError",
    "ServerBindError",
    "SurfaceError",
    "TelemetryError",
]
