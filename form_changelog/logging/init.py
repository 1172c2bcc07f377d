from __future__ import annotations

import logging
import sys

"""Application logging.

Every line on stdout is ``LABEL message`` where LABEL is one of
INFO|WARN|ERROR|SUMMARY (DEBUG with --debug). Modules log through
logging.getLogger(__name__); those loggers sit below ``form_changelog`` and
reach the single stdout handler installed here.

Row-level failures additionally go to the JSON Lines error log
(form_changelog.logging.error_log).
"""

__all__ = [
    "setup_logging",
    "get_logger",
    "log_summary",
    "reset_logging",
]

APP_LOGGER_NAME = "form_changelog"
SUMMARY_LEVEL = 25  # INFO と WARNING の間

_logger: logging.Logger | None = None


class LabeledFormatter(logging.Formatter):
    LEVEL_LABELS = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        SUMMARY_LEVEL: "SUMMARY",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
    }

    def format(self, record: logging.LogRecord) -> str:
        label = self.LEVEL_LABELS.get(record.levelno, record.levelname)
        return f"{label} {record.getMessage()}"


def _install_handler(logger: logging.Logger) -> None:
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(LabeledFormatter())
    logger.addHandler(handler)
    # root 側に二重出力しない
    logger.propagate = False


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Configure the application logger and set its level.

    The handler is installed once; later calls only change the level, so
    ``setup_logging(logging.DEBUG)`` is how --debug is switched on.
    """
    global _logger

    if _logger is None:
        logging.addLevelName(SUMMARY_LEVEL, "SUMMARY")
        _logger = logging.getLogger(APP_LOGGER_NAME)
        _install_handler(_logger)

    _logger.setLevel(level)
    for handler in _logger.handlers:
        handler.setLevel(level)
    return _logger


def get_logger() -> logging.Logger:
    """The application logger, configured at INFO on first use."""
    return _logger if _logger is not None else setup_logging()


def log_summary(message: str) -> None:
    get_logger().log(SUMMARY_LEVEL, message)


def reset_logging() -> None:
    """Forget the configured logger (tests re-bind stdout between runs)."""
    global _logger
    _logger = None
