"""Report rendering and local serving for glprobe sessions."""

from .document import CHART_JS_URL, ReportRenderer, build_chart_data, x_labels
from .models import ReportDocument, ReportTheme
from .server import ContentServer, ResultServer
from .themes import DEFAULT_THEME_NAME, THEMES, get_theme, list_themes

__all__ = [
    "CHART_JS_URL",
    "ContentServer",
    "DEFAULT_THEME_NAME",
    "ReportDocument",
    "ReportRenderer",
    "ReportTheme",
    "ResultServer",
    "THEMES",
    "build_chart_data",
    "get_theme",
    "list_themes",
    "x_labels",
]
