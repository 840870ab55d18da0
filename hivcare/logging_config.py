"""
Central logging configuration.
"""

import logging
import logging.handlers
import sys
from pathlib import Path

from hivcare.config import BASE_DIR, LOG_FILE, LOG_LEVEL


def configure_logging(log_file: str = LOG_FILE, level: str = LOG_LEVEL) -> None:
    """
    Install a rotating file handler (10 MB, 5 backups) and a console handler
    on the root logger. Safe to call more than once.
    """
    log_path = Path(log_file)
    if not log_path.is_absolute():
        log_path = BASE_DIR / log_path
    log_path.parent.mkdir(parents=True, exist_ok=True)

    detailed_formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_formatter = logging.Formatter(fmt="%(levelname)s: %(message)s")

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_path,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(detailed_formatter)
    file_handler.setLevel(getattr(logging, level, logging.INFO))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_formatter)
    console_handler.setLevel(logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    # Avoid duplicate handlers on reloads
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    logging.info("Logging initialized. Writing to: %s", log_path)
