"""Render-surface errors."""

from __future__ import annotations


class SurfaceError(Exception):
    """Base class for render-surface failures."""


class LaunchError(SurfaceError):
    """The browser could not be launched or the page could not be opened."""


class NavigationTimeout(SurfaceError):
    """The target page did not reach its load condition in time."""


class ProtocolError(SurfaceError):
    """A debug-channel command failed."""


class EvalError(SurfaceError):
    """A script evaluated inside the page failed."""
