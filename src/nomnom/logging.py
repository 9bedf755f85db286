from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path

LOGGER_NAME = "nomnom"

_LOGGING_CONFIGURED = False


def setup_logging(filename: str | Path | None = None) -> structlog.stdlib.BoundLogger:
    """Set up structured logging for the nomnom package.

    Logs never go to stdout, which is reserved for the snapshot itself.

    Args:
        filename: Optional path to a log file. If None, logs are written to stderr.

    Returns:
        A structlog logger instance configured for the nomnom package.
    """
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if filename:
        handler: logging.Handler = logging.FileHandler(str(filename), encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(message)s"))
        stdlib_logger = logging.getLogger(LOGGER_NAME)
        for previous in list(stdlib_logger.handlers):
            if isinstance(previous, logging.FileHandler):
                stdlib_logger.removeHandler(previous)
                previous.close()
        stdlib_logger.addHandler(handler)
        stdlib_logger.propagate = False
    if not _LOGGING_CONFIGURED:
        logging.basicConfig(
            level=logging.INFO,
            handlers=[logging.StreamHandler(sys.stderr)],
            format="%(message)s",
        )
        logging.getLogger(LOGGER_NAME).setLevel(logging.INFO)
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.processors.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(ensure_ascii=False),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_CONFIGURED = True

    return structlog.get_logger(LOGGER_NAME)


def configure_level(*, quiet: bool = False) -> None:
    """Switch between informational output and errors only.

    The level lives on the stdlib logger, so loggers already cached by
    structlog pick it up as well.
    """
    logging.getLogger(LOGGER_NAME).setLevel(logging.ERROR if quiet else logging.INFO)


logger = setup_logging()
