"""Command runner and table parsers for the nvidia-smi text interface."""

from __future__ import annotations

import asyncio
import contextlib
import re
from dataclasses import dataclass

from .errors import CommandFailed, MalformedOutput
from .models import ClockFrequencies, EngineUtilization, PowerReadings, Utilization


CLOCKS_QUERY = "clocks.gr,clocks.mem,clocks.sm"
UTILIZATION_QUERY = "utilization.gpu,utilization.memory,memory.total,memory.free,memory.used"
POWER_QUERY = "power.draw,power.limit,power.default_limit,power.min_limit,power.max_limit"

_NON_INT = re.compile(r"[^\d]")
_NON_FLOAT = re.compile(r"[^\d.]")


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def _reap(proc: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
    await proc.wait()


async def run_command(argv: list[str], timeout_s: float = 5.0) -> CommandResult:
    """Run a command without raising; missing binaries and timeouts become return codes."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        return CommandResult(127, "", str(exc))

    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError:
        await _reap(proc)
        return CommandResult(-1, "", f"timeout after {timeout_s:.1f}s")
    except asyncio.CancelledError:
        # Abandoned tick: the child must still be reaped before the cancellation propagates.
        with contextlib.suppress(asyncio.CancelledError):
            await asyncio.shield(_reap(proc))
        raise

    return CommandResult(
        returncode=proc.returncode if proc.returncode is not None else 0,
        stdout=out.decode("utf-8", errors="replace"),
        stderr=err.decode("utf-8", errors="replace"),
    )


def query_argv(command: str, query: str) -> list[str]:
    return [command, f"--query-gpu={query}", "--format=csv"]


def dmon_argv(command: str, count: int | None = 1) -> list[str]:
    argv = [command, "dmon", "-s", "u", "-d", "1"]
    if count is not None:
        argv += ["-c", str(count)]
    return argv


def table_rows(stdout: str) -> list[str]:
    """Non-blank lines with ``#`` comment lines removed."""
    rows: list[str] = []
    for line in stdout.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        rows.append(stripped)
    return rows


def parse_int_field(value: str) -> int:
    digits = _NON_INT.sub("", value or "")
    return int(digits) if digits else 0


def parse_float_field(value: str) -> float:
    cleaned = _NON_FLOAT.sub("", value or "")
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def parse_query_row(stdout: str, expected: int, gpu_index: int = 0) -> list[str]:
    """Return the CSV cells of one GPU's data row from a header-plus-rows table."""
    lines = table_rows(stdout)
    if len(lines) < 2:
        raise MalformedOutput(f"expected header and data row, got {len(lines)} line(s)")
    data = lines[1:]
    if gpu_index >= len(data):
        raise MalformedOutput(f"no data row for gpu {gpu_index} ({len(data)} row(s))")
    values = [v.strip() for v in data[gpu_index].split(",")]
    if len(values) < expected:
        raise MalformedOutput(f"expected {expected} columns, got {len(values)}")
    return values


def parse_clocks(stdout: str, gpu_index: int = 0) -> ClockFrequencies:
    v = parse_query_row(stdout, 3, gpu_index)
    return ClockFrequencies(
        graphics_mhz=parse_int_field(v[0]),
        memory_mhz=parse_int_field(v[1]),
        sm_mhz=parse_int_field(v[2]),
    )


def parse_utilization(stdout: str, gpu_index: int = 0) -> Utilization:
    v = parse_query_row(stdout, 5, gpu_index)
    return Utilization(
        gpu_percent=parse_int_field(v[0]),
        memory_percent=parse_int_field(v[1]),
        memory_total_mib=parse_int_field(v[2]),
        memory_free_mib=parse_int_field(v[3]),
        memory_used_mib=parse_int_field(v[4]),
    )


def parse_power(stdout: str, gpu_index: int = 0) -> PowerReadings:
    v = parse_query_row(stdout, 5, gpu_index)
    return PowerReadings(
        draw_w=parse_float_field(v[0]),
        limit_w=parse_float_field(v[1]),
        default_limit_w=parse_float_field(v[2]),
        min_limit_w=parse_float_field(v[3]),
        max_limit_w=parse_float_field(v[4]),
    )


DMON_COLUMNS: tuple[str, ...] = ("sm", "mem", "enc", "dec", "jpg", "ofa")


def parse_dmon_header(line: str) -> tuple[str, ...] | None:
    """Column names after ``gpu`` from a ``# gpu sm mem ...`` header line, else None."""
    stripped = line.strip()
    if not stripped.startswith("#"):
        return None
    names = stripped.lstrip("#").lower().split()
    if not names or names[0] != "gpu":
        return None
    return tuple(names[1:])


def parse_dmon_line(line: str, gpu_index: int = 0, columns: tuple[str, ...] = DMON_COLUMNS) -> EngineUtilization | None:
    """Parse one ``dmon`` data row against ``columns``; None for noise or other GPUs.

    Columns are matched by name, so older drivers that print only sm/mem/enc/dec
    and outputs with extra groups both work; engines absent from the row stay zero.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    parts = stripped.split()
    if parts[0] != str(gpu_index) or len(parts) - 1 < min(len(columns), 4):
        return None
    values = {
        name: parse_float_field(cell) for name, cell in zip(columns, parts[1:]) if name in DMON_COLUMNS
    }
    return EngineUtilization(**values)


def parse_dmon(stdout: str, gpu_index: int = 0) -> EngineUtilization:
    columns = DMON_COLUMNS
    for line in stdout.splitlines():
        header = parse_dmon_header(line)
        if header is not None:
            columns = header
            continue
        parsed = parse_dmon_line(line, gpu_index, columns)
        if parsed is not None:
            return parsed
    raise MalformedOutput("no dmon data row")


def require_ok(argv: list[str], result: CommandResult) -> str:
    if not result.ok:
        raise CommandFailed(argv, result.returncode, (result.stderr or result.stdout).strip()[:200])
    return result.stdout
