import asyncio
import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))
sys.path.insert(0, str(ROOT / "packages" / "surface"))
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "tests"))

from fakes import absent_runner
from glprobe_telemetry.models import EngineUtilization
from glprobe_telemetry.monitor import EngineMonitor
from glprobe_telemetry.provider import HardwareSampler


def _printer(*lines: str, then_sleep: float = 0.0, exit_code: int = 0) -> list[str]:
    body = "; ".join(f"print({line!r}, flush=True)" for line in lines)
    if then_sleep:
        body += f"; import time; time.sleep({then_sleep})"
    if exit_code:
        body += f"; raise SystemExit({exit_code})"
    return [sys.executable, "-c", body]


async def _wait_for_rows(monitor: EngineMonitor) -> None:
    for _ in range(200):
        if monitor.rows_seen:
            return
        await asyncio.sleep(0.05)


class EngineMonitorTests(unittest.IsolatedAsyncioTestCase):
    def test_ingest_keeps_last_row(self):
        monitor = EngineMonitor()
        monitor.ingest("# gpu sm mem enc dec jpg ofa")
        self.assertIsNone(monitor.last_row)
        monitor.ingest("    0  10  2  0  0  0  0")
        monitor.ingest("    0  30  4  1  0  0  0")
        self.assertEqual(monitor.last_row, EngineUtilization(sm=30, mem=4, enc=1))
        self.assertEqual(monitor.rows_seen, 2)

    def test_ingest_follows_header_column_order(self):
        monitor = EngineMonitor()
        monitor.ingest("# gpu   mem    sm   dec   enc")
        monitor.ingest("    0     9    23     1     2")
        self.assertEqual(monitor.last_row, EngineUtilization(sm=23, mem=9, enc=2, dec=1))

    def test_latest_is_empty_while_not_running(self):
        monitor = EngineMonitor()
        monitor.ingest("    0  30  4  1  0  0  0")
        self.assertFalse(monitor.running)
        self.assertIsNone(monitor.latest())

    def test_default_argv_is_continuous(self):
        self.assertEqual(EngineMonitor("nvidia-smi").argv, ["nvidia-smi", "dmon", "-s", "u", "-d", "1"])

    async def test_run_reads_until_process_exits(self):
        monitor = EngineMonitor(argv=_printer("# gpu sm mem enc dec", "    0  23  9  0  0  0  0"))
        await asyncio.wait_for(monitor.run(), timeout=10)
        self.assertEqual(monitor.last_row.sm, 23.0)
        self.assertIsNone(monitor.latest())
        self.assertIsNone(monitor.last_error)

    async def test_latest_reports_rows_while_process_is_alive(self):
        monitor = EngineMonitor(argv=_printer("    0  5  5  0  0  0  0", then_sleep=30))
        task = asyncio.create_task(monitor.run())
        await _wait_for_rows(monitor)

        self.assertTrue(monitor.running)
        self.assertEqual(monitor.latest().sm, 5.0)

        await monitor.stop()
        await asyncio.wait_for(task, timeout=5)
        self.assertIsNone(monitor.latest())
        self.assertIsNone(monitor.last_error)

    async def test_missing_binary_ends_quietly(self):
        monitor = EngineMonitor(argv=["glprobe-no-such-gpu-tool", "dmon"])
        await monitor.run()
        self.assertIsNone(monitor.latest())
        self.assertIsNotNone(monitor.last_error)

    async def test_crashed_monitor_does_not_feed_stale_engine_rows(self):
        monitor = EngineMonitor(argv=_printer("    0  77  10  0  0  0  0", exit_code=1))
        await asyncio.wait_for(monitor.run(), timeout=10)
        self.assertEqual(monitor.last_error, "exited rc=1")
        self.assertEqual(monitor.rows_seen, 1)

        sample = await HardwareSampler(runner=absent_runner, engine_source=monitor.latest).sample()

        self.assertEqual(sample.engines, EngineUtilization())
        self.assertIn("engines", sample.errors)


if __name__ == "__main__":
    unittest.main()
