"""Loguru setup for the chat and RAG service.

Records carry a ``chat_model`` extra: ``-`` by default, the model name while a
chat turn runs (see ``ChatOrchestrator.run``). Stdlib loggers used by the
server stack are routed into loguru so one sink sees everything.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger

DEFAULT_CONTEXT = {"chat_model": "-"}

# httpx logs every request at INFO; keep it to warnings unless debugging.
_ROUTED_LOGGERS = {
    "uvicorn": None,
    "uvicorn.access": None,
    "uvicorn.error": None,
    "fastapi": None,
    "httpx": logging.WARNING,
}

_TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[chat_model]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    """Forward stdlib records to loguru, keeping the caller's location."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(*, level: str = "INFO", json: bool = False) -> None:
    """Install the single stderr sink and route stdlib loggers through it.

    ``json`` switches to loguru's serialized records for log shippers.
    """
    sink = {"sink": sys.stderr, "level": level.upper(), "serialize": json}
    if not json:
        sink.update(format=_TEXT_FORMAT, colorize=True)
    logger.configure(handlers=[sink], extra=dict(DEFAULT_CONTEXT))

    handler = InterceptHandler()
    for name, floor in _ROUTED_LOGGERS.items():
        routed = logging.getLogger(name)
        routed.handlers = [handler]
        routed.propagate = False
        if floor is not None and level.upper() != "DEBUG":
            routed.setLevel(floor)
    logging.basicConfig(handlers=[handler], level=logging.INFO, force=True)
