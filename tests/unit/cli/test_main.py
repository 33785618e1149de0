"""Unit tests for the main CLI application."""

from tmauto import __version__
from tmauto.cli.main import app
from typer.testing import CliRunner

runner = CliRunner()


class TestMain:
    """Tests for global options."""

    def test_version(self) -> None:
        """--version prints the version and exits."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"tmauto version {__version__}" in result.output

    def test_help_lists_commands(self) -> None:
        """--help lists the subcommands."""
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for name in ("run", "status", "config"):
            assert name in result.output
