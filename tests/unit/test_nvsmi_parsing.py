import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from glprobe_telemetry.errors import CommandFailed, MalformedOutput
from glprobe_telemetry.models import EngineUtilization
from glprobe_telemetry.nvsmi import (
    CommandResult,
    dmon_argv,
    parse_clocks,
    parse_dmon,
    parse_dmon_header,
    parse_dmon_line,
    parse_float_field,
    parse_int_field,
    parse_power,
    parse_utilization,
    query_argv,
    require_ok,
    table_rows,
)

FIXTURES = ROOT / "tests" / "fixtures" / "nvidia_smi"


def fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


class FieldParsingTests(unittest.TestCase):
    def test_units_are_stripped(self):
        self.assertEqual(parse_int_field("1500 MHz"), 1500)
        self.assertEqual(parse_int_field(" 37 %"), 37)
        self.assertAlmostEqual(parse_float_field("55.21 W"), 55.21)

    def test_unparsable_values_become_zero(self):
        self.assertEqual(parse_int_field("[N/A]"), 0)
        self.assertEqual(parse_float_field("[N/A]"), 0.0)
        self.assertEqual(parse_float_field(""), 0.0)

    def test_table_rows_drop_blank_and_comment_lines(self):
        rows = table_rows("# header\n\n  a, b \n# more\nc, d\n")
        self.assertEqual(rows, ["a, b", "c, d"])


class QueryParsingTests(unittest.TestCase):
    def test_clocks(self):
        clocks = parse_clocks(fixture("clocks.csv"))
        self.assertEqual((clocks.graphics_mhz, clocks.memory_mhz, clocks.sm_mhz), (1500, 7000, 1500))

    def test_utilization(self):
        util = parse_utilization(fixture("utilization.csv"))
        self.assertEqual(util.gpu_percent, 37)
        self.assertEqual(util.memory_percent, 12)
        self.assertEqual(util.memory_total_mib, 8192)
        self.assertEqual(util.memory_free_mib, 6144)
        self.assertEqual(util.memory_used_mib, 2048)

    def test_power(self):
        power = parse_power(fixture("power.csv"))
        self.assertAlmostEqual(power.draw_w, 55.21)
        self.assertAlmostEqual(power.max_limit_w, 200.0)

    def test_power_not_supported_fields_are_zero(self):
        power = parse_power(fixture("power_na.csv"))
        self.assertEqual(power.draw_w, 0.0)
        self.assertAlmostEqual(power.default_limit_w, 170.0)

    def test_header_only_output_is_malformed(self):
        with self.assertRaises(MalformedOutput):
            parse_clocks(fixture("header_only.csv"))

    def test_short_row_is_malformed(self):
        with self.assertRaises(MalformedOutput):
            parse_utilization("a, b, c, d, e\n1, 2\n")

    def test_gpu_index_selects_row(self):
        out = "h1, h2, h3\n100 MHz, 200 MHz, 300 MHz\n400 MHz, 500 MHz, 600 MHz\n"
        self.assertEqual(parse_clocks(out, gpu_index=1).graphics_mhz, 400)
        with self.assertRaises(MalformedOutput):
            parse_clocks(out, gpu_index=2)


class DmonParsingTests(unittest.TestCase):
    def test_full_row(self):
        engines = parse_dmon(fixture("dmon.txt"))
        self.assertEqual(engines, EngineUtilization(sm=23, mem=9, enc=0, dec=0, jpg=0, ofa=0))

    def test_legacy_columns_pad_with_zero(self):
        engines = parse_dmon(fixture("dmon_legacy.txt"))
        self.assertEqual(engines.sm, 41.0)
        self.assertEqual(engines.enc, 3.0)
        self.assertEqual((engines.jpg, engines.ofa), (0.0, 0.0))

    def test_other_gpu_row(self):
        self.assertEqual(parse_dmon(fixture("dmon_legacy.txt"), gpu_index=1).sm, 88.0)

    def test_noise_lines_are_ignored(self):
        self.assertIsNone(parse_dmon_line("# gpu sm mem"))
        self.assertIsNone(parse_dmon_line(""))
        self.assertIsNone(parse_dmon_line("0 1 2"))

    def test_columns_follow_header_order(self):
        out = "# gpu   mem    sm   dec   enc\n# Idx     %     %     %     %\n    0     9    23     1     2\n"
        self.assertEqual(parse_dmon(out), EngineUtilization(sm=23, mem=9, enc=2, dec=1))

    def test_unknown_header_columns_are_skipped(self):
        out = "# gpu   pwr gtemp    sm   mem   enc   dec\n    0    55    61    40    12     0     0\n"
        self.assertEqual(parse_dmon(out), EngineUtilization(sm=40, mem=12))

    def test_header_detection(self):
        self.assertEqual(parse_dmon_header("# gpu  sm  mem"), ("sm", "mem"))
        self.assertIsNone(parse_dmon_header("# Idx  %  %"))
        self.assertIsNone(parse_dmon_header("    0  1  2"))

    def test_no_data_row_is_malformed(self):
        with self.assertRaises(MalformedOutput):
            parse_dmon("# gpu sm mem enc dec\n# Idx % % % %\n")


class CommandTests(unittest.TestCase):
    def test_argv_builders(self):
        self.assertEqual(
            query_argv("nvidia-smi", "clocks.gr,clocks.mem,clocks.sm"),
            ["nvidia-smi", "--query-gpu=clocks.gr,clocks.mem,clocks.sm", "--format=csv"],
        )
        self.assertEqual(dmon_argv("nvidia-smi"), ["nvidia-smi", "dmon", "-s", "u", "-d", "1", "-c", "1"])
        self.assertEqual(dmon_argv("nvidia-smi", count=None), ["nvidia-smi", "dmon", "-s", "u", "-d", "1"])

    def test_require_ok_raises_on_failure(self):
        with self.assertRaises(CommandFailed) as ctx:
            require_ok(["nvidia-smi"], CommandResult(9, "", "NVIDIA-SMI has failed"))
        self.assertEqual(ctx.exception.returncode, 9)
        self.assertIn("NVIDIA-SMI has failed", str(ctx.exception))

    def test_require_ok_returns_stdout(self):
        self.assertEqual(require_ok(["x"], CommandResult(0, "data", "")), "data")


if __name__ == "__main__":
    unittest.main()
