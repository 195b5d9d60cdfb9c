"""Logging configuration using loguru.

Library loggers (uvicorn, httpx, botocore, kubernetes_asyncio) are bridged
into loguru.  Every line carries ``extra[user]``; background work binds it
with ``logger.contextualize(user=...)`` so a launch or teardown that outlives
its request can still be traced to the user.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger

LINE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[user]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

# Minimum level per library; raised to the launcher level when that is stricter.
LIBRARY_LEVELS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "urllib3": logging.WARNING,
    "botocore": logging.WARNING,
    "boto3": logging.WARNING,
    "kubernetes_asyncio": logging.INFO,
}


class _StdlibBridge(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", *, json_logs: bool = False) -> None:
    """Install loguru as the only sink.

    With *json_logs* each record is one JSON object, as the cluster log
    shipper expects.
    """
    level = level.upper()
    logger.remove()
    logger.configure(extra={"user": "-"})
    if json_logs:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=LINE_FORMAT)

    logging.basicConfig(handlers=[_StdlibBridge()], level=0, force=True)
    floor = logging.getLevelName(level)
    for name, minimum in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(max(minimum, floor) if isinstance(floor, int) else minimum)

    logger.info("Logging initialised (level={}, json={})", level, json_logs)
