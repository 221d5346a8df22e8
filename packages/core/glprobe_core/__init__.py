"""Core services: settings, logging, the telemetry session, datasets and diagnostics."""

from .config import AppConfig, load_config, normalize, parse_sample_count, save_config
from .dataset import ArtifactPaths, Dataset, SessionBuffers, SessionInfo, load_dataset, merge, persist, persist_trace
from .diagnostics import DiagnosticsExporter, build_doctor_payload
from .errors import FATAL_SESSION_ERRORS, PersistError, ServerBindError
from .session import SessionState, SessionStatus, TelemetrySession

__all__ = [
    "AppConfig",
    "ArtifactPaths",
    "Dataset",
    "DiagnosticsExporter",
    "FATAL_SESSION_ERRORS",
    "PersistError",
    "ServerBindError",
    "SessionBuffers",
    "SessionInfo",
    "SessionState",
    "SessionStatus",
    "TelemetrySession",
    "build_doctor_payload",
    "load_config",
    "load_dataset",
    "merge",
    "normalize",
    "parse_sample_count",
    "persist",
    "persist_trace",
    "save_config",
]
