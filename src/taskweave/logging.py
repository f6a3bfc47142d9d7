"""The taskweave logger.

Modules log through ``get_logger(<area>)`` children of the ``taskweave``
logger. Two extra levels are registered: VERBOSE (15, between DEBUG and
INFO) and TRACE (5, below DEBUG). A config's ``verbose`` setting maps 0-4
onto error, warning, info, verbose and trace.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskweave.config.schema import LoggingConfig

# Custom log levels
TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("taskweave")

_initialized = False

_LEVEL_MAP = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "VERBOSE": VERBOSE,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# verbose=N -> level (0=errors only, 4=everything)
_VERBOSITY_MAP = {
    0: logging.ERROR,
    1: logging.WARNING,
    2: logging.INFO,
    3: VERBOSE,
    4: TRACE,
}


class _LowercaseLevelFormatter(logging.Formatter):
    """Formatter that emits lowercase level names."""

    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Map a LoggingConfig to a numeric level.

    ``verbose`` takes precedence over ``level``; INFO when neither is set.
    """
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        return _VERBOSITY_MAP.get(config.verbose, TRACE)
    if config.level:
        return _LEVEL_MAP.get(config.level.upper(), logging.INFO)
    return logging.INFO


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Set the taskweave level and attach a file handler.

    Only the first call has an effect. Without ``config.file`` no handler is
    attached and records propagate to whatever the host application set up.
    ``TASKWEAVE_LOG`` reaches this function through ``load_config``.

    Raises:
        OSError: If the log file cannot be opened.
    """
    global _initialized
    if _initialized:
        return

    logger.setLevel(resolve_level(config))
    if config is not None and config.file:
        handler = logging.FileHandler(Path(config.file).expanduser(), mode="a", encoding="utf-8")
        handler.setFormatter(
            _LowercaseLevelFormatter(
                "%(asctime)s %(levelname)s: %(name)s: %(message)s", datefmt="%H:%M:%S"
            )
        )
        logger.addHandler(handler)
    _initialized = True


def get_logger(name: str | None = None) -> logging.Logger:
    """The ``taskweave`` logger, or its ``name`` child (``get_logger("graph")``)."""
    return logger.getChild(name) if name else logger
