"""Unit tests for the logging configuration module."""

import json
import logging
from unittest.mock import MagicMock, patch

import pytest
import structlog

from compose_updater.logging import get_logger, project_log, setup_logging


@pytest.fixture(autouse=True)
def _reset_root_logger():
    """Reset root logger and structlog state before and after each test."""
    original_handlers = logging.root.handlers[:]
    original_level = logging.root.level
    logging.root.handlers.clear()
    logging.root.setLevel(logging.WARNING)
    yield
    logging.root.handlers.clear()
    logging.root.handlers.extend(original_handlers)
    logging.root.setLevel(original_level)
    structlog.reset_defaults()


def _mock_settings(log_level: str = "INFO", is_development: bool = False) -> MagicMock:
    mock_settings = MagicMock()
    mock_settings.log_level = log_level
    mock_settings.is_development = is_development
    return mock_settings


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_setup_logging_calls_basic_config_with_debug(self):
        """Test that setup_logging calls basicConfig with correct level for DEBUG."""
        with patch("compose_updater.logging.get_settings", return_value=_mock_settings("DEBUG")):
            with patch("compose_updater.logging.logging.basicConfig") as mock_basic:
                setup_logging()

        mock_basic.assert_called_once_with(format="%(message)s", level=logging.DEBUG, handlers=[])

    def test_setup_logging_invalid_level_defaults_to_info(self):
        """Test setup_logging falls back to INFO for invalid log level."""
        with patch(
            "compose_updater.logging.get_settings", return_value=_mock_settings("NONEXISTENT")
        ):
            with patch("compose_updater.logging.logging.basicConfig") as mock_basic:
                setup_logging()

        mock_basic.assert_called_once_with(format="%(message)s", level=logging.INFO, handlers=[])

    def test_setup_logging_console_handler_has_structlog_formatter(self):
        """Test that the console handler gets a ProcessorFormatter."""
        with patch("compose_updater.logging.get_settings", return_value=_mock_settings()):
            setup_logging()

        console_handlers = [h for h in logging.root.handlers if type(h) is logging.StreamHandler]
        assert len(console_handlers) == 1
        assert isinstance(console_handlers[0].formatter, structlog.stdlib.ProcessorFormatter)

    def test_setup_logging_is_repeatable(self):
        """Calling setup_logging twice leaves a single console handler."""
        with patch("compose_updater.logging.get_settings", return_value=_mock_settings()):
            setup_logging()
            setup_logging()

        console_handlers = [h for h in logging.root.handlers if type(h) is logging.StreamHandler]
        assert len(console_handlers) == 1

    def test_setup_logging_reduces_third_party_noise(self):
        with patch("compose_updater.logging.get_settings", return_value=_mock_settings("DEBUG")):
            setup_logging()

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_setup_logging_configures_structlog(self):
        """Test that setup_logging calls structlog.configure with correct params."""
        with patch("compose_updater.logging.get_settings", return_value=_mock_settings()):
            with patch("compose_updater.logging.structlog.configure") as mock_configure:
                setup_logging()

        mock_configure.assert_called_once()
        call_kwargs = mock_configure.call_args[1]
        assert call_kwargs["context_class"] is dict
        assert call_kwargs["cache_logger_on_first_use"] is True

    def test_setup_logging_development_uses_console_renderer(self):
        """Test that development mode uses ConsoleRenderer for console output."""
        settings = _mock_settings(is_development=True)
        with patch("compose_updater.logging.get_settings", return_value=settings):
            with patch("compose_updater.logging.structlog.dev.ConsoleRenderer") as mock_renderer:
                setup_logging()

        mock_renderer.assert_called_once()

    def test_setup_logging_production_uses_json_renderer(self):
        """Test that production mode uses JSONRenderer for console output."""
        with patch("compose_updater.logging.get_settings", return_value=_mock_settings()):
            with patch(
                "compose_updater.logging.structlog.processors.JSONRenderer"
            ) as mock_renderer:
                setup_logging()

        mock_renderer.assert_called_once_with()


class TestProjectLog:
    """Tests for the per-project log file context manager."""

    def test_records_are_appended_as_json(self, tmp_path):
        """Events logged inside the block land in the project file."""
        log_file = tmp_path / "logs" / "web.log"
        with patch("compose_updater.logging.get_settings", return_value=_mock_settings()):
            setup_logging()

        logger = get_logger("tests.project_log")
        with structlog.contextvars.bound_contextvars(project="web"):
            with project_log(log_file) as handler:
                assert handler is not None
                logger.info("update_started", path="/srv/web")
        logger.info("after_block")

        lines = log_file.read_text().splitlines()
        assert len(lines) == 1
        record = json.loads(lines[0])
        assert record["event"] == "update_started"
        assert record["project"] == "web"
        assert record["path"] == "/srv/web"
        assert record["level"] == "info"

    def test_handler_removed_after_block(self, tmp_path):
        with project_log(tmp_path / "web.log") as handler:
            assert handler in logging.root.handlers
        assert handler not in logging.root.handlers

    def test_unwritable_path_yields_none(self, tmp_path):
        """A log path that cannot be opened does not stop the caller."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")

        with project_log(blocker / "web.log") as handler:
            assert handler is None


class TestGetLogger:
    """Tests for get_logger function."""

    def test_get_logger_returns_usable_logger(self):
        logger = get_logger("compose_updater.test")
        assert hasattr(logger, "info")
        assert hasattr(logger, "warning")
