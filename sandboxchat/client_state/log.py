"""Logging for the chat client.

Everything goes through loguru.  ``setup_logging`` installs one sink and routes
stdlib records (httpx, httpcore) into it.  ``ChatApp.start`` calls it when
``ChatSettings.configure_logging`` is on; embedders that own logging turn it off.
"""

from __future__ import annotations

import contextlib
import logging
import sys
from typing import Any

from loguru import logger

_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)

_NOISY_LIBRARIES = ("httpx", "httpcore")

_sink_id: int | None = None


class _InterceptHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", *, sink: Any = sys.stderr) -> int:
    """Install the client's loguru sink and return its handler id.

    The first call drops loguru's default handler.  Later calls replace only
    the sink installed by the previous call, so handlers added by the
    embedding process survive a second ``ChatApp.start``.
    """
    global _sink_id
    level = level.upper()

    if _sink_id is None:
        logger.remove()
    else:
        # Already gone if someone called logger.remove() in between.
        with contextlib.suppress(ValueError):
            logger.remove(_sink_id)
    _sink_id = logger.add(sink, level=level, format=_FORMAT)

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)
    for name in _NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug("Logging configured at {}", level)
    return _sink_id
