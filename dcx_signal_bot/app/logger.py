"""Logging setup: loguru sinks, with stdlib records from the web layer routed in."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from loguru import logger

NOISY_LOGGERS = ("uvicorn.access", "websockets", "httpx")


class _LoguruHandler(logging.Handler):
    """Forward stdlib logging records (web handlers, uvicorn) to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(exception=record.exc_info, depth=6).log(level, record.getMessage())


def setup_logger(log_dir: str | Path = "logs", level: str = "INFO"):
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(sys.stdout, level=level, enqueue=True)
    logger.add(path / "signal_bot.log", level=level, rotation="5 MB", retention=5, enqueue=True, encoding="utf-8")
    logger.add(path / "errors.log", level="ERROR", rotation="5 MB", retention=5, enqueue=True, encoding="utf-8")

    logging.basicConfig(handlers=[_LoguruHandler()], level=logging.INFO, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return logger
