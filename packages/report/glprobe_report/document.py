"""Static HTML report: one fixed chart layout over a persisted session dataset."""

from __future__ import annotations

import html
import json
import statistics
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from glprobe_core.dataset import Dataset
from glprobe_telemetry.models import ClockSample

from .models import ReportDocument, ReportTheme
from .themes import get_theme

CHART_JS_URL = "https://cdn.jsdelivr.net/npm/chart.js@3.7.1/dist/chart.min.js"
UNIFORM_TOLERANCE = 0.25
_MIB = 1024 * 1024


def _pad(values: list[Any], n: int) -> list[Any]:
    return values[:n] + [None] * max(0, n - len(values))


def _parse_ts(value: str) -> datetime | None:
    try:
        stamp = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp.astimezone(timezone.utc)


def x_labels(hardware: Sequence[ClockSample], n: int) -> tuple[str, list[str]]:
    """``("time", HH:MM:SS)`` when hardware stamps are complete and evenly spaced, else sample numbers."""
    fallback = ("index", [f"Sample {i + 1}" for i in range(n)])
    if n == 0 or len(hardware) != n:
        return fallback
    stamps = [_parse_ts(s.timestamp) for s in hardware]
    if any(s is None for s in stamps):
        return fallback
    intervals = [(b - a).total_seconds() for a, b in zip(stamps, stamps[1:])]  # type: ignore[operator]
    if intervals:
        median = statistics.median(intervals)
        if median <= 0 or any(abs(i - median) > UNIFORM_TOLERANCE * median for i in intervals):
            return fallback
    return "time", [s.strftime("%H:%M:%S") for s in stamps]  # type: ignore[union-attr]


def _hw(group: str, getter: Callable[[ClockSample], float]) -> Callable[[ClockSample], float | None]:
    def read(sample: ClockSample) -> float | None:
        if not sample.available or group in sample.errors:
            return None
        return getter(sample)

    return read


def _series(label: str, items: Sequence[Any], read: Callable[[Any], Any], n: int) -> dict[str, Any]:
    return {"label": label, "data": _pad([read(item) for item in items], n)}


def _chart(chart_id: str, title: str, series: list[dict[str, Any]]) -> dict[str, Any]:
    return {"id": chart_id, "title": title, "series": series}


def build_chart_data(dataset: Dataset) -> dict[str, Any]:
    n = max(dataset.lengths().values())
    label_mode, labels = x_labels(dataset.hardware, n)
    hw = dataset.hardware

    def ok(read: Callable[[Any], Any]) -> Callable[[Any], Any]:
        return lambda s: None if s.error else read(s)

    synthetic = any(w.synthetic for w in dataset.workload)
    workload_title = "Workload counters (synthetic)" if synthetic else "Workload counters"

    sections = [
        {
            "id": "fps",
            "title": "FPS",
            "charts": [_chart("fpsChart", "Frames per second", [_series("FPS", dataset.fps, ok(lambda s: s.fps), n)])],
        },
        {
            "id": "heap",
            "title": "JS heap (MiB)",
            "charts": [
                _chart(
                    "heapChart",
                    "JS heap",
                    [
                        _series("jsHeapSizeLimit", dataset.memory, ok(lambda s: round(s.js_heap_size_limit / _MIB, 3)), n),
                        _series("totalJSHeapSize", dataset.memory, ok(lambda s: round(s.total_js_heap_size / _MIB, 3)), n),
                        _series("usedJSHeapSize", dataset.memory, ok(lambda s: round(s.used_js_heap_size / _MIB, 3)), n),
                    ],
                )
            ],
        },
        {
            "id": "workload",
            "title": workload_title,
            "note": "Generated placeholder values, not measured from the page." if synthetic else "",
            "charts": [
                _chart(
                    "workloadChart",
                    workload_title,
                    [
                        _series("drawCalls", dataset.workload, lambda s: s.draw_calls, n),
                        _series("triangleCount", dataset.workload, lambda s: s.triangle_count, n),
                        _series("programsUsed", dataset.workload, lambda s: s.programs_used, n),
                        _series("texturesUsed", dataset.workload, lambda s: s.textures_used, n),
                    ],
                )
            ],
        },
        {
            "id": "host",
            "title": "Host CPU & memory (%)",
            "charts": [
                _chart(
                    "hostChart",
                    "Host",
                    [
                        _series("cpu %", dataset.host, ok(lambda s: s.cpu_percent), n),
                        _series("memory %", dataset.host, ok(lambda s: s.memory_percent), n),
                    ],
                )
            ],
        },
        {
            "id": "clocks",
            "title": "GPU clocks (MHz)",
            "charts": [
                _chart(
                    "clocksChart",
                    "Clocks",
                    [
                        _series("graphics", hw, _hw("clocks", lambda s: s.clocks.graphics_mhz), n),
                        _series("memory", hw, _hw("clocks", lambda s: s.clocks.memory_mhz), n),
                        _series("sm", hw, _hw("clocks", lambda s: s.clocks.sm_mhz), n),
                    ],
                )
            ],
        },
        {
            "id": "engines",
            "title": "GPU engine utilization (%)",
            "charts": [
                _chart(
                    "enginesChart",
                    "Engines",
                    [
                        _series(name, hw, _hw("engines", lambda s, name=name: getattr(s.engines, name)), n)
                        for name in ("sm", "mem", "enc", "dec", "jpg", "ofa")
                    ],
                )
            ],
        },
        {
            "id": "utilization",
            "title": "GPU utilization and memory",
            "charts": [
                _chart(
                    "utilPercentChart",
                    "Utilization (%)",
                    [
                        _series("gpu", hw, _hw("utilization", lambda s: s.utilization.gpu_percent), n),
                        _series("memory", hw, _hw("utilization", lambda s: s.utilization.memory_percent), n),
                    ],
                ),
                _chart(
                    "memoryMibChart",
                    "Memory (MiB)",
                    [
                        _series("total", hw, _hw("utilization", lambda s: s.utilization.memory_total_mib), n),
                        _series("free", hw, _hw("utilization", lambda s: s.utilization.memory_free_mib), n),
                        _series("used", hw, _hw("utilization", lambda s: s.utilization.memory_used_mib), n),
                    ],
                ),
            ],
        },
        {
            "id": "power",
            "title": "GPU power (W)",
            "charts": [
                _chart(
                    "powerChart",
                    "Power",
                    [
                        _series("draw", hw, _hw("power", lambda s: s.power.draw_w), n),
                        _series("limit", hw, _hw("power", lambda s: s.power.limit_w), n),
                        _series("default limit", hw, _hw("power", lambda s: s.power.default_limit_w), n),
                        _series("min limit", hw, _hw("power", lambda s: s.power.min_limit_w), n),
                        _series("max limit", hw, _hw("power", lambda s: s.power.max_limit_w), n),
                    ],
                )
            ],
        },
    ]

    return {
        "points": n,
        "label_mode": label_mode,
        "labels": labels,
        "sections": sections,
    }


def _embed_json(value: Any) -> str:
    # Keeps a literal "</script>" inside data from closing the script element.
    return json.dumps(value, sort_keys=True).replace("</", "<\\/")


class ReportRenderer:
    def __init__(self, theme: ReportTheme | str | None = None) -> None:
        self.theme = theme if isinstance(theme, ReportTheme) else get_theme(theme)

    def render(self, dataset: Dataset, generated_at: str | None = None) -> ReportDocument:
        generated_at = generated_at or datetime.now(timezone.utc).isoformat()
        chart_data = build_chart_data(dataset)
        return ReportDocument(
            html=self._html(dataset, chart_data, generated_at),
            chart_data=chart_data,
            generated_at=generated_at,
        )

    def _meta_rows(self, dataset: Dataset, generated_at: str) -> str:
        s = dataset.session
        gpu = s.gpu_info or {}
        rows = [
            ("Target", s.target_url),
            ("Started", s.started_at),
            ("Finished", s.finished_at),
            ("Cadence", f"{s.cadence_ms} ms"),
            ("Policy", f"{s.policy} ({s.sample_count})"),
            ("Iterations", str(s.iterations)),
            ("Ended by", s.completed_by),
            ("Renderer", str(gpu.get("renderer") or gpu.get("error") or "unknown")),
            ("Generated", generated_at),
        ]
        features = s.gpu_features or {}
        if features and "error" not in features:
            rows.insert(-1, ("GPU features", ", ".join(f"{k}: {v}" for k, v in sorted(features.items()))))
        return "\n".join(
            f"      <div><span>{html.escape(k)}</span> {html.escape(str(v))}</div>" for k, v in rows
        )

    def _sections_html(self, chart_data: dict[str, Any]) -> str:
        parts = []
        for section in chart_data["sections"]:
            note = section.get("note")
            canvases = "\n".join(
                f'        <div class="chart-container"><canvas id="{chart["id"]}"></canvas></div>'
                for chart in section["charts"]
            )
            parts.append(
                f'    <section class="card" id="section-{section["id"]}">\n'
                f'      <h2>{html.escape(section["title"])}</h2>\n'
                + (f'      <p class="note">{html.escape(note)}</p>\n' if note else "")
                + f'      <div class="charts">\n{canvases}\n      </div>\n'
                "    </section>"
            )
        return "\n".join(parts)

    def _html(self, dataset: Dataset, chart_data: dict[str, Any], generated_at: str) -> str:
        t = self.theme
        return f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>WebGL performance report</title>
  <script src="{CHART_JS_URL}"></script>
  <style>
    *, *::before, *::after {{ box-sizing: border-box; }}
    body {{
      margin: 0;
      padding: 24px 18px 60px 18px;
      background: linear-gradient(180deg, {t.background_start}, {t.background_end});
      color: {t.text_primary};
      font-family: ui-sans-serif, system-ui, -apple-system, Segoe UI, Roboto, Helvetica, Arial;
    }}
    h1 {{ margin: 0 0 12px 0; font-size: 22px; }}
    h2 {{ margin: 0 0 8px 0; font-size: 16px; }}
    .meta {{
      font-family: ui-monospace, SFMono-Regular, Menlo, Consolas, monospace;
      font-size: 12px;
      color: {t.text_secondary};
      line-height: 1.6;
      margin-bottom: 16px;
    }}
    .meta span {{ display: inline-block; min-width: 90px; color: {t.text_primary}; }}
    .card {{
      background: {t.card_bg};
      border-radius: 12px;
      padding: 14px 16px;
      margin-bottom: 16px;
      box-shadow: 0 6px 20px rgba(0,0,0,0.12);
    }}
    .note {{ margin: 0 0 8px 0; font-size: 12px; color: {t.text_secondary}; }}
    .charts {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(420px, 1fr)); gap: 12px; }}
    .chart-container {{ position: relative; height: 280px; }}
  </style>
</head>
<body>
  <h1>WebGL performance report</h1>
  <div class="meta">
{self._meta_rows(dataset, generated_at)}
  </div>
{self._sections_html(chart_data)}
  <script>
    const REPORT = {_embed_json(chart_data)};
    const PALETTE = {_embed_json(list(t.series))};
    for (const section of REPORT.sections) {{
      for (const chart of section.charts) {{
        new Chart(document.getElementById(chart.id).getContext('2d'), {{
          type: 'line',
          data: {{
            labels: REPORT.labels,
            datasets: chart.series.map((s, i) => ({{
              label: s.label,
              data: s.data,
              borderColor: PALETTE[i % PALETTE.length],
              backgroundColor: PALETTE[i % PALETTE.length],
              fill: false,
              spanGaps: false,
              tension: 0.1,
            }})),
          }},
          options: {{
            responsive: true,
            maintainAspectRatio: false,
            animation: false,
            plugins: {{ title: {{ display: true, text: chart.title, color: '{t.text_primary}' }} }},
            scales: {{
              x: {{ ticks: {{ color: '{t.text_secondary}' }}, grid: {{ color: '{t.grid}' }} }},
              y: {{ beginAtZero: true, ticks: {{ color: '{t.text_secondary}' }}, grid: {{ color: '{t.grid}' }} }},
            }},
          }},
        }});
      }}
    }}
  </script>
</body>
</html>
"""
