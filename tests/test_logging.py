"""Tests for logging setup."""

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from conversation_sync.logging import PACKAGE_LOGGER, get_logger, setup_logging


@pytest.fixture
def package_logger() -> Iterator[logging.Logger]:
    """Provide the package logger and strip any handlers added by the test."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    saved = list(logger.handlers)
    logger.handlers.clear()
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers[:] = saved


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_writes_component_log_file(self, tmp_path: Path, package_logger: logging.Logger) -> None:
        """Records from any package module should land in <name>.log."""
        logger = setup_logging("cli", log_dir=tmp_path / "logs", console=False)
        assert logger.name == "conversation_sync.cli"

        get_logger("session").info("Session started: local_user_id=%s", "me")
        for handler in package_logger.handlers:
            handler.flush()

        content = (tmp_path / "logs" / "cli.log").read_text()
        assert "[INFO] conversation_sync.session: Session started: local_user_id=me" in content

    def test_second_call_adds_no_handlers(self, tmp_path: Path, package_logger: logging.Logger) -> None:
        setup_logging("cli", log_dir=tmp_path, console=True)
        count = len(package_logger.handlers)
        setup_logging("other", log_dir=tmp_path, console=True)
        assert count == 2
        assert len(package_logger.handlers) == count

    def test_quiets_http_client_loggers(self, tmp_path: Path, package_logger: logging.Logger) -> None:
        setup_logging("cli", log_dir=tmp_path, console=False, level=logging.DEBUG)
        assert logging.getLogger("httpx").level == logging.WARNING
