"""Tests for logger.py -- setup_logging() and JsonFormatter.

Covers:
- stderr handler, optional file handler
- Debug level override
- LOG_LEVEL env var and the config-file default level
- JSON formatter output
- Third-party logger silencing

Strategy: Mock logging.basicConfig to verify setup_logging passes correct args,
since pytest's log capture plugin interferes with actual basicConfig calls.
"""

import json
import logging
import sys
from unittest.mock import patch

from jpd_github_sync.logger import JsonFormatter, setup_logging

# ---------------------------------------------------------------------------
# setup_logging tests
# ---------------------------------------------------------------------------


class TestSetupLogging:
    """Tests for setup_logging()."""

    @patch("jpd_github_sync.logger.logging.basicConfig")
    def test_logs_to_stderr(self, mock_basic):
        """A StreamHandler(stderr) is always passed to basicConfig."""
        setup_logging()

        mock_basic.assert_called_once()
        kwargs = mock_basic.call_args[1]
        handlers = kwargs["handlers"]
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)
        assert handlers[0].stream is sys.stderr
        assert kwargs["force"] is True

    @patch("jpd_github_sync.logger.logging.basicConfig")
    def test_log_file_adds_file_handler(self, mock_basic, tmp_path):
        log_file = str(tmp_path / "sync.log")
        setup_logging(log_file=log_file)

        handlers = mock_basic.call_args[1]["handlers"]
        file_handlers = [h for h in handlers if isinstance(h, logging.FileHandler)]
        assert len(handlers) == 2
        assert len(file_handlers) == 1
        assert file_handlers[0].baseFilename == log_file
        for h in file_handlers:
            h.close()

    @patch("jpd_github_sync.logger.logging.basicConfig")
    def test_debug_overrides_level(self, mock_basic):
        setup_logging(debug=True)
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("jpd_github_sync.logger.logging.basicConfig")
    def test_env_log_level_honored(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(default_level="DEBUG")
        assert mock_basic.call_args[1]["level"] == logging.ERROR

    @patch("jpd_github_sync.logger.logging.basicConfig")
    def test_debug_beats_env(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(debug=True)
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("jpd_github_sync.logger.logging.basicConfig")
    def test_config_default_level(self, mock_basic, monkeypatch):
        """Without LOG_LEVEL the config file's level applies."""
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(default_level="warning")
        assert mock_basic.call_args[1]["level"] == logging.WARNING

    @patch("jpd_github_sync.logger.logging.basicConfig")
    def test_default_level_is_info(self, mock_basic, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging()
        assert mock_basic.call_args[1]["level"] == logging.INFO

    @patch("jpd_github_sync.logger.logging.basicConfig")
    def test_unknown_level_falls_back_to_info(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "CHATTY")
        setup_logging()
        assert mock_basic.call_args[1]["level"] == logging.INFO

    @patch("jpd_github_sync.logger.logging.basicConfig")
    def test_json_format_uses_json_formatter(self, mock_basic):
        setup_logging(debug_format="json")

        handlers = mock_basic.call_args[1]["handlers"]
        assert all(isinstance(h.formatter, JsonFormatter) for h in handlers)

    @patch("jpd_github_sync.logger.logging.basicConfig")
    def test_third_party_silenced(self, _mock_basic, monkeypatch):
        """Non-DEBUG mode silences urllib3/requests loggers."""
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging()

        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("requests").level == logging.WARNING


# ---------------------------------------------------------------------------
# JsonFormatter tests
# ---------------------------------------------------------------------------


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_basic_output(self):
        """Formatted output is valid JSON with required keys."""
        formatter = JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S")
        record = logging.LogRecord(
            name="jpd_github_sync.sync.engine",
            level=logging.INFO,
            pathname="engine.py",
            lineno=1,
            msg="Created #%d for %s",
            args=(12, "MTT-1"),
            exc_info=None,
        )

        data = json.loads(formatter.format(record))

        assert "ts" in data
        assert data["level"] == "INFO"
        assert data["logger"] == "jpd_github_sync.sync.engine"
        assert data["msg"] == "Created #12 for MTT-1"
        assert "exc" not in data

    def test_includes_exception(self):
        """Exception info is included in 'exc' key."""
        formatter = JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S")

        try:
            raise ValueError("test error")
        except ValueError:
            exc_info = sys.exc_info()

        record = logging.LogRecord(
            name="test",
            level=logging.ERROR,
            pathname="test.py",
            lineno=1,
            msg="An error occurred",
            args=(),
            exc_info=exc_info,
        )

        data = json.loads(formatter.format(record))
        assert "ValueError: test error" in data["exc"]
