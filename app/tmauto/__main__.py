"""Allow running tmauto as ``python -m tmauto``."""

from tmauto.cli.main import app

if __name__ == "__main__":
    app()
