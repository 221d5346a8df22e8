"""CLI entrypoints for glprobe sessions, reports, serving and diagnostics."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from dataclasses import asdict
from pathlib import Path

from glprobe_core import (
    FATAL_SESSION_ERRORS,
    AppConfig,
    DiagnosticsExporter,
    PersistError,
    ServerBindError,
    TelemetrySession,
    build_doctor_payload,
    load_config,
    load_dataset,
    normalize,
    parse_sample_count,
    persist,
    persist_trace,
    save_config,
)
from glprobe_core.config import config_path
from glprobe_core.logging_setup import configure_logging, get_logger, install_crash_hooks
from glprobe_report import ContentServer, ReportRenderer, ResultServer
from glprobe_surface import LaunchError, ProtocolError, RenderSurfaceController

logger = get_logger("cli")


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def _fail(message: str, code: int) -> int:
    print(message, file=sys.stderr)
    logger.error(message, extra={"event": "command_failed"})
    return code


def _load(args: argparse.Namespace) -> AppConfig:
    path = Path(args.config).expanduser() if getattr(args, "config", None) else None
    return load_config(path)


def _output_dir(cfg: AppConfig, args: argparse.Namespace) -> Path:
    return Path(getattr(args, "output_dir", None) or cfg.output.directory).expanduser().resolve()


def _apply_run_overrides(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    if args.url:
        cfg.session.target_url = args.url
    if args.cadence_ms is not None:
        cfg.session.cadence_ms = args.cadence_ms
    if args.samples is not None:
        cfg.session.sample_count = args.samples
    if args.max_iterations is not None:
        cfg.session.max_iterations = args.max_iterations
    if args.trace_ms is not None:
        cfg.session.trace_ms = args.trace_ms
    if args.port is not None:
        cfg.server.port = args.port
    if args.output_dir:
        cfg.output.directory = args.output_dir
    if args.headless:
        cfg.browser.headless = True
    if args.clear_data:
        cfg.browser.clear_data = True
    if args.no_open:
        cfg.server.open_browser = False
    if args.no_hardware:
        cfg.hardware.enabled = False
    return normalize(cfg)


async def _run_session(session: TelemetrySession):
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, session.cancel)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handlers; Ctrl+C then aborts the run.
            pass
    try:
        return await session.run()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def _write_report(cfg: AppConfig, out_dir: Path, html: str) -> Path:
    path = out_dir / cfg.output.report_file
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(html, encoding="utf-8")
    except OSError as exc:
        raise PersistError(f"could not write report {path}: {exc}") from exc
    return path


def _serve(cfg: AppConfig, html: str, open_browser: bool) -> int:
    server = ResultServer(html, host=cfg.server.host, port=cfg.server.port)
    try:
        server.bind()
    except ServerBindError as exc:
        return _fail(f"result server failed: {exc} (artifacts were kept)", 3)

    print(f"Serving report at {server.url} (Ctrl+C to stop)")
    if open_browser:
        server.open_viewer()
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    cfg = _apply_run_overrides(_load(args), args)
    install_crash_hooks()
    session = TelemetrySession(cfg)

    try:
        dataset = asyncio.run(_run_session(session))
    except FATAL_SESSION_ERRORS as exc:
        return _fail(f"session failed: {exc}", 1)

    out_dir = _output_dir(cfg, args)
    try:
        paths = persist(dataset, out_dir, cfg.output.hardware_file, cfg.output.surface_file)
        document = ReportRenderer(cfg.report.theme).render(dataset)
        report_path = _write_report(cfg, out_dir, document.html)
    except PersistError as exc:
        return _fail(f"persist failed: {exc}", 1)

    trace_path = None
    if session.trace_events:
        try:
            trace_path = persist_trace(session.trace_events, out_dir, cfg.output.trace_file)
        except PersistError as exc:
            logger.warning("trace not saved: %s", exc, extra={"event": "trace_persist_failed"})

    _print_json(
        {
            "iterations": dataset.session.iterations,
            "completed_by": dataset.session.completed_by,
            "degraded_ticks": session.status.degraded_ticks,
            "hardware": str(paths.hardware),
            "surface": str(paths.surface),
            "report": str(report_path),
            "trace": str(trace_path) if trace_path else None,
        }
    )
    if args.no_serve:
        return 0
    return _serve(cfg, document.html, cfg.server.open_browser)


def cmd_report(args: argparse.Namespace) -> int:
    cfg = _load(args)
    out_dir = _output_dir(cfg, args)
    try:
        dataset = load_dataset(out_dir, cfg.output.hardware_file, cfg.output.surface_file)
        document = ReportRenderer(args.theme or cfg.report.theme).render(dataset)
        report_path = _write_report(cfg, out_dir, document.html)
    except PersistError as exc:
        return _fail(f"report failed: {exc}", 1)

    _print_json({"report": str(report_path), "points": document.chart_data["points"]})
    if not args.serve:
        return 0
    return _serve(cfg, document.html, cfg.server.open_browser and not args.no_open)


def cmd_serve(args: argparse.Namespace) -> int:
    cfg = _load(args)
    if args.port is not None:
        cfg.server.port = args.port
        normalize(cfg)
    report = Path(args.report).expanduser() if args.report else _output_dir(cfg, args) / cfg.output.report_file
    try:
        html = report.read_text(encoding="utf-8")
    except OSError as exc:
        return _fail(f"could not read report {report}: {exc}", 1)
    return _serve(cfg, html, cfg.server.open_browser and not args.no_open)


def cmd_doctor(args: argparse.Namespace) -> int:
    cfg = _load(args)
    payload = build_doctor_payload(cfg)

    if args.export:
        exporter = DiagnosticsExporter()
        out_dir = Path(args.out_dir).expanduser().resolve() if args.out_dir else None
        bundle = exporter.bundle(cfg=cfg, doctor_payload=payload, recent_session_events=[], output_dir=out_dir)
        payload["diagnostics_bundle"] = str(bundle)

    _print_json(payload)
    return 0


async def _clear_browsing_data(cfg: AppConfig) -> None:
    surface = await RenderSurfaceController(cfg.browser.launch_options()).open()
    try:
        await surface.clear_browsing_data()
    finally:
        await surface.close()


def cmd_clear_data(args: argparse.Namespace) -> int:
    cfg = _load(args)
    try:
        asyncio.run(_clear_browsing_data(cfg))
    except (LaunchError, ProtocolError) as exc:
        return _fail(f"clear-data failed: {exc}", 1)
    _print_json({"success": True, "cleared": ["cookies", "cache", "storage"]})
    return 0


def cmd_host_content(args: argparse.Namespace) -> int:
    cfg = _load(args)
    server = ContentServer(args.directory, host=cfg.server.host, port=args.port)
    try:
        server.bind()
    except ServerBindError as exc:
        return _fail(f"content server failed: {exc}", 3)
    print(f"Serving {server.directory} at {server.url} (Ctrl+C to stop)")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    path = Path(args.config).expanduser() if args.config else config_path()
    if args.config_cmd == "init":
        if path.exists() and not args.force:
            return _fail(f"{path} already exists (use --force to overwrite)", 1)
        _print_json({"written": str(save_config(AppConfig(), path))})
        return 0
    _print_json({"path": str(path), "config": asdict(load_config(path))})
    return 0


def _sample_count(value: str):
    try:
        return parse_sample_count(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="glprobe", description="WebGL and GPU telemetry sessions")
    parser.add_argument("--verbose", action="store_true", help="Also log to the console")
    sub = parser.add_subparsers(dest="command", required=True)

    run_cmd = sub.add_parser("run", help="Run a telemetry session, write artifacts and serve the report")
    run_cmd.add_argument("--url", default=None, help="Page to instrument")
    run_cmd.add_argument("--cadence-ms", type=int, default=None)
    run_cmd.add_argument("--samples", type=_sample_count, default=None, help="Tick count, or 'signal'")
    run_cmd.add_argument("--max-iterations", type=int, default=None, help="Cap for the signal policy (0 = none)")
    run_cmd.add_argument("--trace-ms", type=int, default=None, help="Trace the page this long before sampling (0 = off)")
    run_cmd.add_argument("--port", type=int, default=None, help="Result server port")
    run_cmd.add_argument("--output-dir", default=None)
    run_cmd.add_argument("--headless", action="store_true")
    run_cmd.add_argument("--no-serve", action="store_true", help="Write artifacts and exit")
    run_cmd.add_argument("--no-open", action="store_true", help="Do not open a browser on the report")
    run_cmd.add_argument("--no-hardware", action="store_true", help="Skip the hardware tool")
    run_cmd.add_argument("--clear-data", action="store_true", help="Clear cookies, cache and storage first")
    run_cmd.add_argument("--config", default=None, help="Config file path")
    run_cmd.set_defaults(func=cmd_run)

    report_cmd = sub.add_parser("report", help="Regenerate the report from persisted artifacts")
    report_cmd.add_argument("--output-dir", default=None)
    report_cmd.add_argument("--theme", default=None)
    report_cmd.add_argument("--serve", action="store_true")
    report_cmd.add_argument("--no-open", action="store_true")
    report_cmd.add_argument("--config", default=None)
    report_cmd.set_defaults(func=cmd_report)

    serve_cmd = sub.add_parser("serve", help="Serve an existing report file")
    serve_cmd.add_argument("--report", default=None, help="Report HTML path")
    serve_cmd.add_argument("--port", type=int, default=None)
    serve_cmd.add_argument("--output-dir", default=None)
    serve_cmd.add_argument("--no-open", action="store_true")
    serve_cmd.add_argument("--config", default=None)
    serve_cmd.set_defaults(func=cmd_serve)

    doctor_cmd = sub.add_parser("doctor", help="Print diagnostics for the hardware tool and browser")
    doctor_cmd.add_argument("--export", action="store_true", help="Export offline diagnostics bundle")
    doctor_cmd.add_argument("--out-dir", default=None, help="Optional output directory for diagnostics bundle")
    doctor_cmd.add_argument("--config", default=None)
    doctor_cmd.set_defaults(func=cmd_doctor)

    clear_cmd = sub.add_parser("clear-data", help="Clear browser cookies, cache and storage")
    clear_cmd.add_argument("--config", default=None)
    clear_cmd.set_defaults(func=cmd_clear_data)

    content_cmd = sub.add_parser("host-content", help="Serve a directory of WebGL test pages")
    content_cmd.add_argument("--directory", required=True)
    content_cmd.add_argument("--port", type=int, default=9999)
    content_cmd.add_argument("--config", default=None)
    content_cmd.set_defaults(func=cmd_host_content)

    config_cmd = sub.add_parser("config", help="Show or initialize the config file")
    config_sub = config_cmd.add_subparsers(dest="config_cmd", required=True)
    show_cmd = config_sub.add_parser("show")
    show_cmd.add_argument("--config", default=None)
    init_cmd = config_sub.add_parser("init")
    init_cmd.add_argument("--config", default=None)
    init_cmd.add_argument("--force", action="store_true")
    config_cmd.set_defaults(func=cmd_config)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(keep_files=_load(args).diagnostics.keep_log_files, console=args.verbose)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
