"""Configures application-wide logging."""

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_HANDLER = "focusstack-console"


def get_app_data_dir() -> Path:
    """Returns the application data directory."""
    app_data = os.getenv("APPDATA")
    if app_data:
        return Path(app_data) / "focusstack"
    return Path.home() / ".focusstack"


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None) -> logging.Logger:
    """Sets up console logging and, optionally, a rotating log file.

    Args:
        verbose: Log DEBUG messages from the stacking modules to the console.
        log_file: Path of a rotating log file (10 MB x 5). None disables it.
    """
    formatter = logging.Formatter(LOG_FORMAT)
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    console = next((h for h in root_logger.handlers if h.get_name() == CONSOLE_HANDLER), None)
    if console is None:
        console = logging.StreamHandler()
        console.set_name(CONSOLE_HANDLER)
        console.setFormatter(formatter)
        root_logger.addHandler(console)
    console.setLevel(logging.DEBUG if verbose else logging.INFO)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=10*1024*1024, backupCount=5
        )
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    # PIL logs every decoded chunk at DEBUG
    logging.getLogger("PIL").setLevel(logging.INFO)
    return root_logger


def default_log_file() -> Path:
    return get_app_data_dir() / "logs" / "app.log"
