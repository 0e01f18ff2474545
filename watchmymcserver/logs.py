"""
Diagnostic logging for the watcher itself.

This is separate from the server log: watcher diagnostics go to a rotating
file under the data directory and to stderr, while server output is only
ever appended to the configured server log.
"""

import logging
from logging.handlers import RotatingFileHandler

from .config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(settings: Settings, quiet: bool = False):
    """Configure the root logger with a rotating file and a console handler."""
    settings.supervisor_log.parent.mkdir(parents=True, exist_ok=True)

    log_formatter = logging.Formatter(LOG_FORMAT)

    # Rotating file handler (auto-compaction)
    file_handler = RotatingFileHandler(
        settings.supervisor_log,
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
    )
    file_handler.setFormatter(log_formatter)

    # Console handler; quiet keeps stdout/stderr for problems only
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)
    if quiet:
        console_handler.setLevel(logging.WARNING)

    logging.basicConfig(
        level=settings.log_level.upper(),
        handlers=[file_handler, console_handler],
        force=True,
    )
