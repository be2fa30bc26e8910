from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(filename)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
ROOT_LOGGER_NAME = "studytrack_app"


def configure_logging(
    data_dir: str | Path,
    level: str | int = logging.INFO,
    console: bool = False,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """Attach file (and optionally console) handlers to the package logger.

    Safe to call more than once: handlers are named and never added twice.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    fmt = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    file_handler_name = f"{ROOT_LOGGER_NAME}:file"
    if not any(h.get_name() == file_handler_name for h in logger.handlers):
        log_dir = Path(data_dir) / "logs"
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                filename=log_dir / "studytrack.log",
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
                delay=True,
            )
        except OSError as exc:
            logger.warning("file logging unavailable dir=%s error=%s", log_dir, exc)
        else:
            handler.setLevel(level)
            handler.setFormatter(fmt)
            handler.set_name(file_handler_name)
            logger.addHandler(handler)

    console_handler_name = f"{ROOT_LOGGER_NAME}:console"
    if console and not any(h.get_name() == console_handler_name for h in logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(fmt)
        console_handler.set_name(console_handler_name)
        logger.addHandler(console_handler)

    return logger
