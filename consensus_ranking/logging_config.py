"""
Logging configuration for consensus ranking.

Every record carries the component name bound by get_logger, so the service,
the estimator, storage and the orchestrator can be told apart in one stream.
"""

import sys
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from loguru import Logger

ROOT_COMPONENT = "consensus_ranking"
DEBUG_LOG_FILE = "consensus_ranking_debug.log"

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}:{function}:{line}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[name]}:{function}:{line} - {message}"


def _add_file_sink(path: str, level: str, rotation: str, retention: str) -> None:
    _ = logger.add(
        path,
        level=level,
        format=_FILE_FORMAT,
        rotation=rotation,
        retention=retention,
        compression="zip",
    )


def setup_logging(level: str = "INFO", debug: bool = False, log_file: str | None = "consensus_ranking.log") -> None:
    """
    Configure loguru sinks for a study run.

    Args:
        level: Console level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        debug: Force DEBUG on the console and add the debug file sink
        log_file: Rotating INFO log; None keeps logs off disk (tests)
    """
    # Remove default handler
    logger.remove()
    # Records logged before get_logger binds a name still format
    logger.configure(extra={"name": ROOT_COMPONENT})

    _ = logger.add(sys.stderr, level="DEBUG" if debug else level, format=_CONSOLE_FORMAT)

    # Decisions, recalculations and stop reasons (INFO and above)
    if log_file:
        _add_file_sink(log_file, "INFO", rotation="10 MB", retention="7 days")

    # Per-pair and per-batch detail
    if debug:
        _add_file_sink(DEBUG_LOG_FILE, "DEBUG", rotation="50 MB", retention="3 days")


def get_logger(name: str | None = None) -> "Logger":
    """Logger bound to a component name (the package name if omitted)."""
    return logger.bind(name=name or ROOT_COMPONENT)
