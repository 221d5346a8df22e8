"""Doctor checks and diagnostics bundles for local support."""

from __future__ import annotations

import asyncio
import importlib.util
import json
import platform
import re
import shutil
import tempfile
import zipfile
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from glprobe_surface import default_executable_path
from glprobe_telemetry import HardwareSampler

from .config import AppConfig, config_path
from .logging_setup import log_dir


_SECRET_RE = re.compile(r"(token|secret|password|apikey|api_key|auth|cookie)", re.IGNORECASE)


def _jsonable(value: Any) -> Any:
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, Path):
        return str(value)
    return value


def redact(value: Any) -> Any:
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if _SECRET_RE.search(str(k)):
                out[k] = "***REDACTED***"
            else:
                out[k] = redact(v)
        return out
    if isinstance(value, list):
        return [redact(v) for v in value]
    return value


def probe_hardware(cfg: AppConfig) -> dict[str, Any]:
    hw = cfg.hardware
    resolved = shutil.which(hw.command)
    payload: dict[str, Any] = {
        "command": hw.command,
        "resolved": resolved,
        "enabled": hw.enabled,
        "gpu_index": hw.gpu_index,
    }
    if not hw.enabled or resolved is None:
        payload["sample"] = None
        return payload
    sampler = HardwareSampler(command=hw.command, timeout_s=cfg.timeouts.hardware_ms / 1000, gpu_index=hw.gpu_index)
    payload["sample"] = asyncio.run(sampler.sample()).to_dict()
    return payload


def build_doctor_payload(cfg: AppConfig, hardware_probe: bool = True) -> dict[str, Any]:
    executable = cfg.browser.executable_path or default_executable_path()
    return {
        "ts_utc": datetime.now(timezone.utc).isoformat(),
        "platform": platform.platform(),
        "python": platform.python_version(),
        "config": redact(asdict(cfg)),
        "hardware": probe_hardware(cfg) if hardware_probe else {"command": cfg.hardware.command},
        "surface": {
            "playwright_installed": importlib.util.find_spec("playwright") is not None,
            "executable_path": executable,
            "executable_exists": bool(executable) and Path(executable).exists(),
            "channel": cfg.browser.channel,
            "fallback": "playwright chromium" if not executable and not cfg.browser.channel else None,
        },
    }


class DiagnosticsExporter:
    def __init__(self, app_name: str = "glprobe") -> None:
        self.app_name = app_name

    def bundle(
        self,
        cfg: AppConfig,
        doctor_payload: dict[str, Any],
        recent_session_events: list[dict[str, Any]] | None = None,
        output_dir: Path | None = None,
    ) -> Path:
        output_base = output_dir or Path(tempfile.gettempdir())
        output_base.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        zip_path = output_base / f"glprobe-diagnostics-{stamp}.zip"

        logs = sorted(log_dir().glob("*.log*"))

        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            manifest = {
                "app": self.app_name,
                "created_utc": datetime.now(timezone.utc).isoformat(),
                "host": platform.platform(),
                "python": platform.python_version(),
                "config_path": str(config_path()),
                "log_dir": str(log_dir()),
            }
            zf.writestr("manifest.json", json.dumps(manifest, indent=2, sort_keys=True))
            zf.writestr("doctor.json", json.dumps(redact(doctor_payload), indent=2, sort_keys=True, default=_jsonable))
            zf.writestr("config.redacted.json", json.dumps(redact(asdict(cfg)), indent=2, sort_keys=True))
            zf.writestr(
                "session_events.json",
                json.dumps(redact(recent_session_events or []), indent=2, sort_keys=True, default=_jsonable),
            )

            for item in logs:
                zf.write(item, arcname=f"logs/{item.name}")

        return zip_path
