"""Persistent glprobe settings schema and load/save helpers."""

from __future__ import annotations

import json
import os
import platform
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from glprobe_surface.models import DEFAULT_LAUNCH_ARGS, LaunchOptions


CONFIG_VERSION = 2
SIGNAL = "signal"


@dataclass
class SessionConfig:
    target_url: str = "http://127.0.0.1:5500/"
    cadence_ms: int = 1000
    sample_count: int | str = SIGNAL
    max_iterations: int = 0
    completion_expression: str = "window.operationComplete === true"
    trace_ms: int = 0

    @property
    def policy(self) -> str:
        return SIGNAL if self.sample_count == SIGNAL else "count"


@dataclass
class TimeoutsConfig:
    navigation_ms: int = 60000
    call_ms: int = 2000
    fps_window_ms: int = 1000
    fps_timeout_ms: int = 3000
    hardware_ms: int = 5000
    grace_ms: int = 2000
    trace_complete_ms: int = 10000


@dataclass
class BrowserConfig:
    executable_path: str | None = None
    channel: str | None = None
    headless: bool = False
    args: list[str] = field(default_factory=lambda: list(DEFAULT_LAUNCH_ARGS))
    viewport_width: int = 1200
    viewport_height: int = 800
    clear_data: bool = False
    capture_gpu_features: bool = True

    def launch_options(self) -> LaunchOptions:
        return LaunchOptions(
            executable_path=self.executable_path or None,
            channel=self.channel or None,
            headless=bool(self.headless),
            args=tuple(self.args),
            viewport_width=int(self.viewport_width),
            viewport_height=int(self.viewport_height),
        )


@dataclass
class HardwareConfig:
    enabled: bool = True
    command: str = "nvidia-smi"
    gpu_index: int = 0
    engine_monitor: bool = True


@dataclass
class OutputConfig:
    directory: str = "."
    hardware_file: str = "gpu-metrics.json"
    surface_file: str = "cpu-metrics.json"
    report_file: str = "webgl-visualization.html"
    trace_file: str = "webgl-trace.json"


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 1234
    open_browser: bool = True


@dataclass
class ReportConfig:
    theme: str = "Daylight"


@dataclass
class DiagnosticsConfig:
    keep_log_files: int = 7


@dataclass
class AppConfig:
    config_version: int = CONFIG_VERSION
    session: SessionConfig = field(default_factory=SessionConfig)
    timeouts: TimeoutsConfig = field(default_factory=TimeoutsConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    hardware: HardwareConfig = field(default_factory=HardwareConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)


DEFAULT_CONFIG = AppConfig()


def data_root() -> Path:
    """Per-user glprobe directory; ``GLPROBE_HOME`` overrides the platform default."""
    override = os.environ.get("GLPROBE_HOME", "").strip()
    if override:
        return Path(override)
    system = platform.system()
    if system == "Windows":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        return base / "glprobe"
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / "glprobe"
    return Path.home() / ".config" / "glprobe"


def config_path() -> Path:
    return data_root() / "config.json"


def parse_sample_count(value: Any) -> int | str:
    """``"signal"`` or a positive iteration count; raises ValueError otherwise."""
    if isinstance(value, str):
        text = value.strip().lower()
        if text == SIGNAL:
            return SIGNAL
        value = int(text)
    count = int(value)
    if count < 1:
        raise ValueError("sample count must be >= 1 or 'signal'")
    return count


def _merge(dataclass_type, raw: dict[str, Any]):
    defaults = dataclass_type()  # type: ignore[misc]
    for k, v in (raw or {}).items():
        if hasattr(defaults, k):
            setattr(defaults, k, v)
    return defaults


def _normalize_session(cfg: AppConfig) -> None:
    s = cfg.session
    s.cadence_ms = max(0, min(600000, int(s.cadence_ms)))
    try:
        s.sample_count = parse_sample_count(s.sample_count)
    except (TypeError, ValueError):
        s.sample_count = SIGNAL
    s.max_iterations = max(0, int(s.max_iterations or 0))
    s.trace_ms = max(0, min(600000, int(s.trace_ms or 0)))


def _normalize_timeouts(cfg: AppConfig) -> None:
    t = cfg.timeouts
    t.navigation_ms = max(1000, int(t.navigation_ms))
    t.call_ms = max(50, int(t.call_ms))
    t.fps_window_ms = max(100, int(t.fps_window_ms))
    # The fps call needs headroom over its own measurement window.
    t.fps_timeout_ms = max(int(t.fps_timeout_ms), t.fps_window_ms + 500)
    t.hardware_ms = max(100, int(t.hardware_ms))
    t.grace_ms = max(0, int(t.grace_ms))
    t.trace_complete_ms = max(100, int(t.trace_complete_ms))


def _normalize_server(cfg: AppConfig) -> None:
    cfg.server.port = max(0, min(65535, int(cfg.server.port)))


def _migrate(raw: dict[str, Any]) -> dict[str, Any]:
    version = int(raw.get("config_version", 1))
    data = dict(raw)

    if version < 2:
        # v1 was the flat {targetUrl, cadenceMs, sampleCount, port} shape.
        session = dict(data.get("session", {}) or {})
        for old, new in (("targetUrl", "target_url"), ("cadenceMs", "cadence_ms"), ("sampleCount", "sample_count")):
            if old in data:
                session.setdefault(new, data.pop(old))
        data["session"] = session
        if "port" in data:
            server = dict(data.get("server", {}) or {})
            server.setdefault("port", data.pop("port"))
            data["server"] = server
        data["config_version"] = 2

    return data


def load_config(path: Path | None = None) -> AppConfig:
    path = path or config_path()
    if not path.exists():
        return AppConfig()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return AppConfig()
    if not isinstance(raw, dict):
        return AppConfig()

    data = _migrate(raw)
    cfg = AppConfig(
        config_version=int(data.get("config_version", CONFIG_VERSION)),
        session=_merge(SessionConfig, data.get("session", {})),
        timeouts=_merge(TimeoutsConfig, data.get("timeouts", {})),
        browser=_merge(BrowserConfig, data.get("browser", {})),
        hardware=_merge(HardwareConfig, data.get("hardware", {})),
        output=_merge(OutputConfig, data.get("output", {})),
        server=_merge(ServerConfig, data.get("server", {})),
        report=_merge(ReportConfig, data.get("report", {})),
        diagnostics=_merge(DiagnosticsConfig, data.get("diagnostics", {})),
    )

    normalize(cfg)
    return cfg


def normalize(cfg: AppConfig) -> AppConfig:
    _normalize_session(cfg)
    _normalize_timeouts(cfg)
    _normalize_server(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path | None = None) -> Path:
    cfg.config_version = CONFIG_VERSION
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True), encoding="utf-8")
    return path
