"""Logging setup for tmauto runs.

Runs are started by launchd without a terminal, so the primary sink is a
size-rotated log file in the state directory. Verbose runs also log to
stderr through Rich.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.logging import RichHandler

from tmauto.utils.formatting import err_console

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_HANDLER_MARKER = "_tmauto_handler"


class LogFileHandler(RotatingFileHandler):
    """Size-limited log file.

    With ``backupCount`` of 0 the file is truncated in place when it
    reaches ``maxBytes`` instead of growing without bound.
    """

    def doRollover(self) -> None:
        if self.backupCount > 0:
            super().doRollover()
            return
        if self.stream:
            self.stream.close()
            self.stream = None
        with open(self.baseFilename, "w", encoding=self.encoding):
            pass
        if not self.delay:
            self.stream = self._open()


def configure_logging(
    log_file: Path | None,
    *,
    verbose: bool = False,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """Configure the ``tmauto`` logger.

    Previously installed tmauto handlers are replaced, so calling this more
    than once (e.g. from tests) does not duplicate output.

    Args:
        log_file: Log file path, or None to skip file logging.
        verbose: Also log to stderr at DEBUG level.
        max_bytes: Rotate when the file reaches this size (0 disables rotation).
        backup_count: Number of rotated files to keep; 0 truncates the file
            in place instead.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger("tmauto")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = LogFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        except OSError as e:
            err_console.print(f"[warning]Warning:[/] Cannot open log file {log_file}: {e}")
        else:
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            setattr(file_handler, _HANDLER_MARKER, True)
            logger.addHandler(file_handler)

    if verbose:
        rich_handler = RichHandler(console=err_console, show_path=False, markup=False)
        rich_handler.setFormatter(logging.Formatter("%(message)s"))
        setattr(rich_handler, _HANDLER_MARKER, True)
        logger.addHandler(rich_handler)

    return logger
