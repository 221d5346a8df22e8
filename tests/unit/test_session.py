import asyncio
import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))
sys.path.insert(0, str(ROOT / "packages" / "surface"))
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "tests"))

from fakes import FakeController, FakeHost, FakeSurface, absent_runner, fixture_runner, fixture_text, make_config
from glprobe_core.session import SessionState, TelemetrySession
from glprobe_surface.errors import LaunchError, NavigationTimeout
from glprobe_surface.workload import SyntheticWorkloadSource
from glprobe_telemetry.models import EngineUtilization
from glprobe_telemetry.nvsmi import CommandResult
from glprobe_telemetry.provider import HardwareSampler


def build_session(cfg, surface=None, runner=None, controller=None, **kwargs):
    surface = surface or FakeSurface()
    return TelemetrySession(
        cfg,
        controller=controller or FakeController(surface),
        hardware=HardwareSampler(runner=runner or fixture_runner()),
        host=FakeHost(),
        workload=SyntheticWorkloadSource(seed=1),
        **kwargs,
    )


class SessionPolicyTests(unittest.IsolatedAsyncioTestCase):
    async def test_count_policy_runs_exactly_n_ticks(self):
        surface = FakeSurface()
        session = build_session(make_config(sample_count=4), surface)
        dataset = await session.run()

        self.assertEqual(dataset.session.iterations, 4)
        self.assertEqual(dataset.session.completed_by, "count")
        self.assertEqual(set(dataset.lengths().values()), {4})
        self.assertEqual(surface.flag_reads, 0)
        self.assertTrue(surface.closed)

    async def test_signal_after_third_tick_stops_at_three(self):
        surface = FakeSurface(flag_after=3)
        session = build_session(make_config(sample_count="signal", max_iterations=5), surface)
        dataset = await session.run()

        self.assertEqual(dataset.session.iterations, 3)
        self.assertEqual(dataset.session.completed_by, "signal")
        self.assertEqual(dataset.lengths()["hardware"], 3)
        self.assertEqual(dataset.lengths()["fps"], 3)

    async def test_signal_policy_respects_iteration_cap(self):
        session = build_session(make_config(sample_count="signal", max_iterations=2), FakeSurface())
        dataset = await session.run()

        self.assertEqual(dataset.session.iterations, 2)
        self.assertEqual(dataset.session.completed_by, "max_iterations")

    async def test_session_metadata(self):
        cfg = make_config(sample_count=1, target_url="http://127.0.0.1:5500/scene.html")
        surface = FakeSurface()
        dataset = await build_session(cfg, surface).run()

        info = dataset.session
        self.assertEqual(surface.navigated, ["chrome://gpu", "http://127.0.0.1:5500/scene.html"])
        self.assertEqual(info.target_url, "http://127.0.0.1:5500/scene.html")
        self.assertEqual(info.policy, "count")
        self.assertEqual(info.workload_source, "synthetic")
        self.assertEqual(info.gpu_info["renderer"], "Fake Renderer")
        self.assertEqual(info.gpu_features, {"WebGL": "Hardware accelerated"})
        self.assertEqual(info.trace_events, 0)
        self.assertTrue(info.started_at)
        self.assertTrue(info.finished_at)
        self.assertIn("Performance.enable", surface.debug_channel.commands)

    async def test_clear_data_runs_before_navigation(self):
        cfg = make_config(sample_count=1)
        cfg.browser.clear_data = True
        surface = FakeSurface()
        await build_session(cfg, surface).run()
        self.assertTrue(surface.cleared)


class SessionDegradationTests(unittest.IsolatedAsyncioTestCase):
    async def test_absent_hardware_tool_gives_unavailable_markers(self):
        session = build_session(make_config(sample_count=3), runner=absent_runner)
        dataset = await session.run()

        self.assertEqual(len(dataset.hardware), 3)
        self.assertTrue(all(not s.available for s in dataset.hardware))
        self.assertEqual(len(dataset.fps), 3)
        self.assertEqual(session.status.degraded_ticks, 3)

    async def test_header_only_hardware_output_degrades_and_continues(self):
        runner = fixture_runner({"clocks": CommandResult(0, fixture_text("header_only.csv"), "")})
        dataset = await build_session(make_config(sample_count=2), runner=runner).run()

        self.assertEqual(dataset.session.iterations, 2)
        self.assertTrue(all("clocks" in s.errors for s in dataset.hardware))
        self.assertTrue(all(s.available for s in dataset.hardware))

    async def test_fps_timeout_is_recorded_and_loop_proceeds(self):
        cfg = make_config(sample_count=2)
        cfg.timeouts.fps_timeout_ms = 100
        dataset = await build_session(cfg, FakeSurface(fps_delay=1.0)).run()

        self.assertEqual(dataset.session.iterations, 2)
        self.assertEqual([f.fps for f in dataset.fps], [0.0, 0.0])
        self.assertEqual([f.error for f in dataset.fps], ["timeout", "timeout"])
        self.assertIsNone(dataset.memory[0].error)

    async def test_hardware_disabled(self):
        cfg = make_config(sample_count=2)
        cfg.hardware.enabled = False
        session = TelemetrySession(
            cfg, controller=FakeController(), host=FakeHost(), workload=SyntheticWorkloadSource(seed=1)
        )
        dataset = await session.run()

        self.assertEqual(len(dataset.hardware), 2)
        self.assertFalse(dataset.hardware[0].available)
        self.assertIn("disabled", dataset.hardware[0].errors["sample"])


class SessionFailureTests(unittest.IsolatedAsyncioTestCase):
    async def test_launch_error_aborts(self):
        session = build_session(make_config(sample_count=2), controller=FakeController(error=LaunchError("no browser")))
        with self.assertRaises(LaunchError):
            await session.run()
        self.assertEqual(session.status.state, SessionState.ABORTED)
        self.assertIn("no browser", session.status.last_error)

    async def test_navigation_timeout_aborts_and_releases_surface(self):
        surface = FakeSurface(nav_error=NavigationTimeout("not loaded within 60000 ms"))
        session = build_session(make_config(sample_count=2), surface)
        with self.assertRaises(NavigationTimeout):
            await session.run()
        self.assertEqual(session.status.state, SessionState.ABORTED)
        self.assertTrue(surface.closed)
        self.assertEqual(session.buffers.lengths()["hardware"], 0)

    async def test_unexpected_setup_error_aborts_and_releases_surface(self):
        surface = FakeSurface(nav_error=RuntimeError("page crashed"))
        session = build_session(make_config(sample_count=2), surface)
        with self.assertRaises(RuntimeError):
            await session.run()
        self.assertEqual(session.status.state, SessionState.ABORTED)
        self.assertTrue(surface.closed)

    async def test_cancellation_during_setup_aborts_and_releases_surface(self):
        surface = FakeSurface(nav_error=asyncio.CancelledError())
        session = build_session(make_config(sample_count=2), surface)
        with self.assertRaises(asyncio.CancelledError):
            await session.run()
        self.assertEqual(session.status.state, SessionState.ABORTED)
        self.assertTrue(surface.closed)


class SessionCancellationTests(unittest.IsolatedAsyncioTestCase):
    async def test_cancel_mid_tick_abandons_calls_after_grace(self):
        cfg = make_config(sample_count=5)
        cfg.timeouts.fps_timeout_ms = 60000
        cfg.timeouts.grace_ms = 50
        surface = FakeSurface(fps_delay=30.0)
        session = build_session(cfg, surface)

        asyncio.get_running_loop().call_later(0.2, session.cancel)
        dataset = await asyncio.wait_for(session.run(), timeout=10)

        self.assertEqual(dataset.session.completed_by, "cancelled")
        self.assertEqual(dataset.session.iterations, 1)
        self.assertEqual(set(dataset.lengths().values()), {1})
        self.assertEqual(dataset.fps[0].error, "cancelled")
        self.assertTrue(dataset.hardware[0].available)
        self.assertTrue(surface.closed)
        self.assertEqual(session.status.state, SessionState.DONE)

    async def test_cancel_between_ticks(self):
        cfg = make_config(sample_count=100)
        cfg.session.cadence_ms = 50
        session = build_session(cfg)

        asyncio.get_running_loop().call_later(0.3, session.cancel)
        dataset = await asyncio.wait_for(session.run(), timeout=10)

        self.assertEqual(dataset.session.completed_by, "cancelled")
        self.assertGreaterEqual(dataset.session.iterations, 1)
        self.assertLess(dataset.session.iterations, 100)
        self.assertEqual(len(set(dataset.lengths().values())), 1)


class FakeMonitor:
    def __init__(self) -> None:
        self.started = False
        self.stopped = False
        self._done = asyncio.Event()

    def latest(self):
        return EngineUtilization(sm=64.0)

    async def run(self) -> None:
        self.started = True
        await self._done.wait()

    async def stop(self) -> None:
        self.stopped = True
        self._done.set()


class CrashingMonitor(FakeMonitor):
    async def run(self) -> None:
        self.started = True
        raise RuntimeError("dmon pipe closed")


class SessionMonitorTests(unittest.IsolatedAsyncioTestCase):
    async def test_engine_monitor_runs_beside_loop_and_is_joined(self):
        monitor = FakeMonitor()
        session = TelemetrySession(
            make_config(sample_count=2),
            controller=FakeController(),
            hardware=HardwareSampler(runner=fixture_runner(), engine_source=monitor.latest),
            host=FakeHost(),
            workload=SyntheticWorkloadSource(seed=1),
            engine_monitor=monitor,
        )
        dataset = await session.run()

        self.assertTrue(monitor.started)
        self.assertTrue(monitor.stopped)
        self.assertEqual(dataset.hardware[0].engines.sm, 64.0)

    async def test_failed_monitor_is_reported_and_session_completes(self):
        monitor = CrashingMonitor()
        session = build_session(make_config(sample_count=2), engine_monitor=monitor)
        with self.assertLogs("glprobe.session", level="WARNING") as logs:
            dataset = await session.run()

        self.assertEqual(dataset.session.iterations, 2)
        self.assertEqual(session.status.state, SessionState.DONE)
        failures = [line for line in logs.output if "engine monitor failed" in line]
        self.assertEqual(len(failures), 1)
        self.assertIn("dmon pipe closed", failures[0])

    async def test_monitor_not_started_when_navigation_fails(self):
        monitor = FakeMonitor()
        surface = FakeSurface(nav_error=NavigationTimeout("slow"))
        session = build_session(make_config(sample_count=1), surface, engine_monitor=monitor)
        with self.assertRaises(NavigationTimeout):
            await session.run()
        self.assertFalse(monitor.started)


class GpuPageDownSurface(FakeSurface):
    async def navigate(self, url: str, timeout_ms: int) -> None:
        if url == "chrome://gpu":
            raise NavigationTimeout("chrome://gpu not loaded within 1000 ms")
        await super().navigate(url, timeout_ms)


class SessionExtrasTests(unittest.IsolatedAsyncioTestCase):
    async def test_trace_is_captured_before_sampling(self):
        cfg = make_config(sample_count=2, trace_ms=50)
        surface = FakeSurface()
        session = build_session(cfg, surface)
        dataset = await session.run()

        self.assertEqual(session.trace_events, [{"name": "GPUTask", "ph": "X"}])
        self.assertEqual(dataset.session.trace_events, 1)
        commands = surface.debug_channel.commands
        self.assertLess(commands.index("Tracing.end"), commands.index("Performance.getMetrics"))
        events = [e["event"] for e in session.recent_events()]
        self.assertLess(events.index("trace_captured"), events.index("tick"))

    async def test_trace_disabled_by_default(self):
        surface = FakeSurface()
        session = build_session(make_config(sample_count=1), surface)
        await session.run()
        self.assertNotIn("Tracing.start", surface.debug_channel.commands)
        self.assertEqual(session.trace_events, [])

    async def test_trace_failure_does_not_end_session(self):
        surface = FakeSurface(protocol_error="Tracing domain unavailable")
        session = build_session(make_config(sample_count=2, trace_ms=50), surface)
        with self.assertLogs("glprobe.session", level="WARNING") as logs:
            dataset = await session.run()

        self.assertEqual(dataset.session.iterations, 2)
        self.assertEqual(session.trace_events, [])
        self.assertEqual(session.status.state, SessionState.DONE)
        self.assertTrue(any("trace capture failed" in line for line in logs.output))

    async def test_unreachable_gpu_page_is_recorded_and_session_continues(self):
        surface = GpuPageDownSurface()
        dataset = await build_session(make_config(sample_count=1), surface).run()

        self.assertIn("not loaded", dataset.session.gpu_features["error"])
        self.assertEqual(surface.navigated, ["http://127.0.0.1:5500/"])
        self.assertEqual(dataset.session.iterations, 1)

    async def test_gpu_feature_capture_can_be_disabled(self):
        cfg = make_config(sample_count=1)
        cfg.browser.capture_gpu_features = False
        surface = FakeSurface()
        dataset = await build_session(cfg, surface).run()

        self.assertEqual(surface.navigated, ["http://127.0.0.1:5500/"])
        self.assertEqual(dataset.session.gpu_features, {})


class SessionStateTests(unittest.IsolatedAsyncioTestCase):
    async def test_lifecycle_transitions_are_recorded(self):
        session = build_session(make_config(sample_count=2))
        self.assertEqual(session.status.state, SessionState.IDLE)
        await session.run()

        states = [e["to"] for e in session.recent_events() if e["event"] == "state"]
        self.assertEqual(states, ["Starting", "Sampling", "Draining", "Done"])
        ticks = [e for e in session.recent_events() if e["event"] == "tick"]
        self.assertEqual([t["iteration"] for t in ticks], [1, 2])

    async def test_event_ring_is_bounded(self):
        session = build_session(make_config(sample_count=1))
        for i in range(1100):
            session._log_event("noise", i=i)
        self.assertEqual(len(session.recent_events(limit=5000)), 1000)
        self.assertEqual(session.recent_events(limit=1)[0]["i"], 1099)


if __name__ == "__main__":
    unittest.main()
