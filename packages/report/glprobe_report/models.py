"""Typed report models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ReportTheme:
    name: str
    background_start: str
    background_end: str
    card_bg: str
    text_primary: str
    text_secondary: str
    grid: str
    series: tuple[str, ...]


@dataclass(frozen=True)
class ReportDocument:
    """Rendered report. ``chart_data`` is a pure function of the dataset."""

    html: str
    chart_data: dict[str, Any] = field(default_factory=dict)
    generated_at: str = ""
