"""Built-in report palettes."""

from __future__ import annotations

from .models import ReportTheme

DEFAULT_THEME_NAME = "Daylight"

THEMES: dict[str, ReportTheme] = {
    "Daylight": ReportTheme(
        name="Daylight",
        background_start="#F7F9FC",
        background_end="#EEF2F8",
        card_bg="#FFFFFF",
        text_primary="#1B2333",
        text_secondary="#5A6478",
        grid="rgba(27,35,51,0.08)",
        series=("#2E7D32", "#1E63D6", "#F08C00", "#D6336C", "#7048E8", "#0C8599"),
    ),
    "Neon Slate": ReportTheme(
        name="Neon Slate",
        background_start="#0A0F1D",
        background_end="#131B33",
        card_bg="#1A253F",
        text_primary="#F4F7FF",
        text_secondary="#A9B5D1",
        grid="rgba(255,255,255,0.09)",
        series=("#35D9FF", "#8CFFB5", "#FFB347", "#FF6B9A", "#B197FC", "#FFE066"),
    ),
    "Arctic Pulse": ReportTheme(
        name="Arctic Pulse",
        background_start="#07171F",
        background_end="#123240",
        card_bg="#173F52",
        text_primary="#EFFFFF",
        text_secondary="#B9DFE8",
        grid="rgba(255,255,255,0.10)",
        series=("#59F3FF", "#86FFD0", "#FFD166", "#FF8FA3", "#C3A6FF", "#9BE15D"),
    ),
}


def list_themes() -> list[str]:
    return sorted(THEMES.keys())


def get_theme(name: str | None) -> ReportTheme:
    if not name:
        return THEMES[DEFAULT_THEME_NAME]
    return THEMES.get(name, THEMES[DEFAULT_THEME_NAME])
