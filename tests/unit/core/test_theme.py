"""Unit tests for theme loading."""

# pyright: reportPrivateUsage=false

from pathlib import Path
from unittest.mock import patch

import pytest
from rich.theme import Theme
from tmauto.core.theme import ThemeColors, _load_toml_colors, get_rich_theme, load_theme


class TestThemeColors:
    """Tests for ThemeColors validation."""

    def test_short_and_long_hex(self) -> None:
        """Both #RGB and #RRGGBB are accepted."""
        colors = ThemeColors(mounted="#abc", running="#123456")
        assert colors.mounted == "#abc"
        assert colors.running == "#123456"

    @pytest.mark.parametrize(
        ("value", "message"),
        [
            ("c1ff62", "must start with '#'"),
            ("#c1ff6", "must be #RGB or #RRGGBB"),
            ("#zzzzzz", "invalid hex color"),
        ],
    )
    def test_rejects_bad_colors(self, value: str, message: str) -> None:
        """Malformed colors are rejected with a clear message."""
        with pytest.raises(ValueError, match=message):
            ThemeColors(mounted=value)

    def test_unknown_field(self) -> None:
        """Unknown color names are rejected."""
        with pytest.raises(ValueError):
            ThemeColors(installed="#ffffff")  # type: ignore[call-arg]


class TestLoadTomlColors:
    """Tests for _load_toml_colors."""

    def test_reads_colors_section(self, tmp_path: Path) -> None:
        """String values of [colors] are returned."""
        path = tmp_path / "theme.toml"
        path.write_text('[colors]\nmounted = "#000000"\nlevel = 3\n')

        assert _load_toml_colors(path) == {"mounted": "#000000"}

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file yields None."""
        assert _load_toml_colors(tmp_path / "nope.toml") is None

    def test_invalid_toml(self, tmp_path: Path) -> None:
        """Unparseable TOML yields None."""
        path = tmp_path / "theme.toml"
        path.write_text("[colors\n")
        assert _load_toml_colors(path) is None


class TestLoadTheme:
    """Tests for load_theme."""

    def test_user_override_merges(self, tmp_path: Path) -> None:
        """User colors override bundled ones key by key."""
        user = tmp_path / "theme.toml"
        user.write_text('[colors]\nrunning = "#111111"\n')

        with patch("tmauto.core.theme.get_user_theme_path", return_value=user):
            colors = load_theme()

        assert colors.running == "#111111"
        assert colors.success == ThemeColors().success

    def test_invalid_override_falls_back(self, tmp_path: Path) -> None:
        """An invalid user theme falls back to defaults."""
        user = tmp_path / "theme.toml"
        user.write_text('[colors]\nrunning = "blue"\n')

        with patch("tmauto.core.theme.get_user_theme_path", return_value=user):
            colors = load_theme()

        assert colors == ThemeColors()


class TestGetRichTheme:
    """Tests for get_rich_theme."""

    def test_destination_styles(self) -> None:
        """Destination state styles are present."""
        theme = get_rich_theme(ThemeColors())

        assert isinstance(theme, Theme)
        for name in ("mounted", "unmounted", "running", "error", "success"):
            assert name in theme.styles
