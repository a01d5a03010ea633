"""Unit tests for logging configuration and the server entry point."""

import logging
from unittest.mock import MagicMock, patch

import pytest

from windowgate import __main__ as entry
from windowgate.config import Settings
from windowgate.logging import build_processors, setup_logging, store_backend_processor


class TestLogging:
    """Tests for logging setup."""

    @patch("windowgate.logging.get_settings")
    @patch("windowgate.logging.structlog")
    def test_setup_logging_json(self, mock_structlog, mock_get_settings):
        """Test logging setup with JSON format."""
        mock_get_settings.return_value = Settings(log_format="json", log_level="INFO")

        setup_logging()

        mock_structlog.configure.assert_called_once()
        processors = mock_structlog.configure.call_args.kwargs["processors"]
        assert processors[-1] is mock_structlog.processors.JSONRenderer.return_value
        mock_structlog.make_filtering_bound_logger.assert_called_once_with(logging.INFO)

    @patch("windowgate.logging.get_settings")
    @patch("windowgate.logging.structlog")
    def test_setup_logging_console(self, mock_structlog, mock_get_settings):
        """Test logging setup with console format."""
        mock_get_settings.return_value = Settings(log_format="console", log_level="debug")

        setup_logging()

        processors = mock_structlog.configure.call_args.kwargs["processors"]
        assert processors[-1] is mock_structlog.dev.ConsoleRenderer.return_value
        mock_structlog.make_filtering_bound_logger.assert_called_once_with(logging.DEBUG)

    @patch("windowgate.logging.get_settings")
    @patch("windowgate.logging.structlog")
    def test_explicit_settings_win(self, mock_structlog, mock_get_settings):
        setup_logging(Settings(log_level="WARNING"))

        mock_get_settings.assert_not_called()
        mock_structlog.make_filtering_bound_logger.assert_called_once_with(logging.WARNING)

    @patch("windowgate.logging.structlog")
    def test_unknown_level_rejected(self, mock_structlog):
        with pytest.raises(ValueError, match="Unknown log level"):
            setup_logging(Settings(log_level="chatty"))

        mock_structlog.configure.assert_not_called()

    @patch("windowgate.logging.structlog")
    def test_quiet_loggers_follow_stricter_level(self, mock_structlog):
        setup_logging(Settings(log_level="ERROR"))

        assert logging.getLogger("redis").level == logging.ERROR
        assert logging.getLogger("uvicorn.access").level == logging.ERROR

    def test_store_backend_stamped(self):
        processor = store_backend_processor("redis")

        assert processor(None, "info", {"event": "x"}) == {"event": "x", "store_backend": "redis"}
        # An explicit value from the call site is kept
        assert processor(None, "info", {"store_backend": "memory"})["store_backend"] == "memory"

    def test_processor_chain_includes_backend(self):
        processors = build_processors(Settings(store_backend="redis"))

        event = {"event": "rate_limit_store_error"}
        for processor in processors[:-1]:
            event = processor(None, "warning", event)

        assert event["store_backend"] == "redis"
        assert event["level"] == "warning"
        assert event["timestamp"].endswith("Z")


class TestEntryPoint:
    """Tests for python -m windowgate."""

    def test_uvicorn_options(self):
        options = entry.uvicorn_options(Settings(host="0.0.0.0", port=9000, workers=4))

        assert options == {
            "host": "0.0.0.0",
            "port": 9000,
            "log_level": "info",
            "access_log": False,
            "log_config": None,
            "workers": 4,
        }

    def test_debug_reloads_instead_of_forking(self):
        options = entry.uvicorn_options(Settings(debug=True, workers=4))

        assert options["reload"] is True
        assert "workers" not in options

    @patch("windowgate.__main__.uvicorn")
    @patch("windowgate.__main__.setup_logging")
    @patch("windowgate.__main__.get_settings")
    def test_main_runs_app(self, mock_get_settings, mock_setup, mock_uvicorn):
        settings = Settings(port=9001)
        mock_get_settings.return_value = settings

        entry.main()

        mock_setup.assert_called_once_with(settings)
        args, kwargs = mock_uvicorn.run.call_args
        assert args == ("windowgate.app:app",)
        assert kwargs["port"] == 9001

    @pytest.mark.parametrize(
        "backend,workers,warned",
        [("memory", 4, True), ("memory", 1, False), ("redis", 4, False)],
    )
    @patch("windowgate.__main__.uvicorn")
    @patch("windowgate.__main__.setup_logging")
    @patch("windowgate.__main__.get_settings")
    def test_memory_store_worker_warning(
        self, mock_get_settings, mock_setup, mock_uvicorn, backend, workers, warned
    ):
        mock_get_settings.return_value = Settings(store_backend=backend, workers=workers)

        with patch.object(entry, "logger", MagicMock()) as mock_logger:
            entry.main()

        assert mock_logger.warning.called is warned
        mock_logger.info.assert_called_once()
