"""Logging setup for conversation-sync entry points.

Library modules only call get_logger(); handlers are installed once, on the
``conversation_sync`` package logger, by whichever entry point runs
setup_logging() first.
"""

import logging
import sys
from pathlib import Path

DEFAULT_LOG_DIR = Path.home() / "conversation-sync" / "logs"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

PACKAGE_LOGGER = "conversation_sync"

# httpx logs every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(
    name: str,
    log_dir: Path | None = None,
    level: int = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """Send package logs to <log_dir>/<name>.log and, optionally, stderr.

    Calling it again is harmless: the first call's handlers stay in place and
    only the level is updated.

    Returns:
        The ``conversation_sync.<name>`` logger
    """
    log_dir = log_dir or DEFAULT_LOG_DIR
    package = logging.getLogger(PACKAGE_LOGGER)
    package.setLevel(level)
    logger = get_logger(name)

    if package.handlers:
        return logger

    log_dir.mkdir(parents=True, exist_ok=True)
    handlers: list[logging.Handler] = [logging.FileHandler(log_dir / f"{name}.log", encoding="utf-8")]
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        package.addHandler(handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
