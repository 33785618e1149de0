"""Console color theme.

The bundled palette lives in ``tmauto/data/theme.toml``. Any subset of its
keys can be overridden in ``~/.config/tmauto/theme.toml``; a broken override
never prevents output, it only falls back to the bundled palette.
"""

import logging
import re
import tomllib
from importlib import resources
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from rich.theme import Theme

from tmauto.core.paths import get_config_dir

logger = logging.getLogger(__name__)

_HEX_COLOR = re.compile(r"^#(?:[0-9A-Fa-f]{3}|[0-9A-Fa-f]{6})$")


class ThemeColors(BaseModel):
    """Palette used by status tables, run summaries and log output."""

    model_config = ConfigDict(extra="forbid")

    text: str = "#ffffff"
    muted: str = "#b2bec3"
    header: str = "#69B9A1"
    border: str = "#29526d"
    success: str = "#03b971"
    warning: str = "#f5b332"
    error: str = "#f53263"
    info: str = "#0ec1c8"
    mounted: str = "#c1ff62"
    unmounted: str = "#b2bec3"
    running: str = "#0e8ac8"

    @field_validator("*", mode="before")
    @classmethod
    def check_hex(cls, value: object) -> str:
        if not isinstance(value, str):
            msg = "color must be a string"
            raise ValueError(msg)
        color = value.strip()
        if not color.startswith("#"):
            msg = "color must start with '#'"
            raise ValueError(msg)
        if len(color) not in (4, 7):
            msg = "color must be #RGB or #RRGGBB"
            raise ValueError(msg)
        if not _HEX_COLOR.match(color):
            msg = f"invalid hex color {color!r}"
            raise ValueError(msg)
        return color


# Rich style name -> (palette key, modifier)
_STYLES: dict[str, tuple[str, str]] = {
    "text": ("text", ""),
    "muted": ("muted", ""),
    "dim": ("muted", ""),
    "header": ("header", ""),
    "bold_header": ("header", "bold"),
    "border": ("border", ""),
    "success": ("success", ""),
    "warning": ("warning", ""),
    "error": ("error", "bold"),
    "info": ("info", ""),
    "mounted": ("mounted", "bold"),
    "unmounted": ("unmounted", ""),
    "running": ("running", "bold"),
}


def get_user_theme_path() -> Path:
    """Location of the optional user palette override."""
    return get_config_dir() / "theme.toml"


def _bundled_theme_path() -> Path:
    return Path(str(resources.files("tmauto.data").joinpath("theme.toml")))


def _load_toml_colors(path: Path) -> dict[str, str] | None:
    """Read the ``[colors]`` table of a theme file.

    Non-string values are dropped. Returns None if the file is missing,
    unreadable or not valid TOML.
    """
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        return None
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning("Ignoring theme file %s: %s", path, e)
        return None

    colors = data.get("colors", {})
    if not isinstance(colors, dict):
        logger.warning("Ignoring theme file %s: [colors] is not a table", path)
        return None
    return {key: value for key, value in colors.items() if isinstance(value, str)}


def load_theme() -> ThemeColors:
    """Merge the bundled palette with the user override, if any."""
    colors = _load_toml_colors(_bundled_theme_path()) or {}
    overrides = _load_toml_colors(get_user_theme_path())
    if overrides:
        colors.update(overrides)

    try:
        return ThemeColors(**colors)
    except ValidationError as e:
        logger.warning("Invalid theme colors, using built-in palette: %s", e)
        return ThemeColors()


def get_rich_theme(colors: ThemeColors | None = None) -> Theme:
    """Build the Rich theme for a palette (loaded from disk when omitted)."""
    palette = colors or load_theme()
    styles = {}
    for name, (key, modifier) in _STYLES.items():
        color = getattr(palette, key)
        styles[name] = f"{modifier} {color}" if modifier else color
    return Theme(styles)


_theme: Theme | None = None


def get_theme() -> Theme:
    """Return the process-wide Rich theme, loading it on first use."""
    global _theme
    if _theme is None:
        _theme = get_rich_theme()
    return _theme
