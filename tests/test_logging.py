"""
Tests for the logging configuration module.

Tests the centralized logging configuration functionality.
"""

import logging
import os
from unittest.mock import patch

from outreach_sync.utils.logging import (
    CONSOLE_FORMAT,
    LOG_FILE_PREFIX,
    ROOT_LOGGER_NAME,
    VERBOSE_FORMAT,
    ColoredFormatter,
    cleanup_old_logs,
    disable_logging,
    enable_logging,
    get_log_file_path,
    get_log_level_from_env,
    get_logger,
    set_log_level,
    setup_logging,
)


class TestConstants:
    """Tests for module constants."""

    def test_console_format_defined(self):
        assert "%(message)s" in CONSOLE_FORMAT

    def test_verbose_format_includes_thread_and_location(self):
        """Worker-thread records must be attributable in verbose output."""
        assert "%(threadName)s" in VERBOSE_FORMAT
        assert "%(lineno)d" in VERBOSE_FORMAT


class TestGetLogLevelFromEnv:
    """Tests for get_log_level_from_env function."""

    @patch.dict(os.environ, {"OUTREACH_SYNC_DEBUG": "true"}, clear=False)
    def test_debug_mode_from_env(self):
        """Test debug mode enabled with 'true'."""
        assert get_log_level_from_env() == logging.DEBUG

    @patch.dict(
        os.environ,
        {"OUTREACH_SYNC_LOG_LEVEL": "WARNING", "OUTREACH_SYNC_DEBUG": ""},
        clear=False,
    )
    def test_log_level_warning(self):
        assert get_log_level_from_env() == logging.WARNING

    @patch.dict(
        os.environ,
        {"OUTREACH_SYNC_LOG_LEVEL": "WARN", "OUTREACH_SYNC_DEBUG": ""},
        clear=False,
    )
    def test_warn_alias(self):
        assert get_log_level_from_env() == logging.WARNING

    @patch.dict(
        os.environ,
        {"OUTREACH_SYNC_LOG_LEVEL": "INVALID", "OUTREACH_SYNC_DEBUG": ""},
        clear=False,
    )
    def test_invalid_level_defaults_to_info(self):
        assert get_log_level_from_env() == logging.INFO


class TestGetLogFilePath:
    """Tests for get_log_file_path function."""

    @patch.dict(os.environ, {"OUTREACH_SYNC_LOG_FILE": "none"}, clear=False)
    def test_disabled_by_env(self):
        assert get_log_file_path() is None

    @patch.dict(os.environ, {"OUTREACH_SYNC_LOG_FILE": "/tmp/x.log"}, clear=False)
    def test_explicit_file_from_env(self):
        assert str(get_log_file_path()) == "/tmp/x.log"

    def test_dated_file_in_log_dir(self, tmp_path, monkeypatch):
        monkeypatch.delenv("OUTREACH_SYNC_LOG_FILE", raising=False)
        path = get_log_file_path(tmp_path)
        assert path.parent == tmp_path
        assert path.name.startswith(LOG_FILE_PREFIX)


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_console_only(self):
        logger = setup_logging(level=logging.WARNING, enable_file_logging=False)
        assert logger.name == ROOT_LOGGER_NAME
        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1

    def test_verbose_forces_debug(self):
        logger = setup_logging(
            level=logging.ERROR, verbose=True, enable_file_logging=False
        )
        assert logger.level == logging.DEBUG

    def test_file_handler_captures_debug(self, tmp_path):
        """The file handler stays at DEBUG whatever the console level."""
        log_file = tmp_path / "run.log"
        logger = setup_logging(level=logging.WARNING, log_file=log_file)
        file_handlers = [
            h for h in logger.handlers if isinstance(h, logging.FileHandler)
        ]
        assert len(file_handlers) == 1
        assert file_handlers[0].level == logging.DEBUG
        assert log_file.exists()

    def test_repeated_setup_does_not_stack_handlers(self):
        setup_logging(enable_file_logging=False)
        logger = setup_logging(enable_file_logging=False)
        assert len(logger.handlers) == 1

    def test_set_log_level_leaves_file_handler(self, tmp_path):
        logger = setup_logging(level=logging.INFO, log_file=tmp_path / "a.log")
        set_log_level(logging.ERROR)
        levels = {type(h): h.level for h in logger.handlers}
        assert levels[logging.FileHandler] == logging.DEBUG
        assert levels[logging.StreamHandler] == logging.ERROR

    def test_disable_and_enable(self):
        disable_logging()
        assert logging.getLogger(ROOT_LOGGER_NAME).disabled
        enable_logging()
        assert not logging.getLogger(ROOT_LOGGER_NAME).disabled


class TestColoredFormatter:
    """Tests for ColoredFormatter."""

    def test_colors_do_not_leak_to_other_handlers(self):
        """Formatting must not mutate the shared record."""
        formatter = ColoredFormatter(CONSOLE_FORMAT, use_colors=True)
        formatter.use_colors = True
        record = logging.LogRecord(
            "outreach_sync.x", logging.ERROR, __file__, 1, "boom", None, None
        )
        output = formatter.format(record)
        assert "boom" in output
        assert record.levelname == "ERROR"
        assert record.msg == "boom"

    def test_no_colors(self):
        formatter = ColoredFormatter(CONSOLE_FORMAT, use_colors=False)
        formatter.use_colors = False
        record = logging.LogRecord(
            "outreach_sync.x", logging.INFO, __file__, 1, "plain", None, None
        )
        assert formatter.format(record) == "INFO: plain"


class TestGetLogger:
    """Tests for get_logger function."""

    def test_prefixes_foreign_names(self):
        assert get_logger("mymodule").name == f"{ROOT_LOGGER_NAME}.mymodule"

    def test_keeps_package_names(self):
        name = "outreach_sync.sync.engine"
        assert get_logger(name).name == name


class TestCleanupOldLogs:
    """Tests for cleanup_old_logs function."""

    def test_keeps_most_recent(self, tmp_path):
        for day in range(5):
            path = tmp_path / f"{LOG_FILE_PREFIX}2024010{day}.log"
            path.write_text("x")
            os.utime(path, (1_700_000_000 + day, 1_700_000_000 + day))

        deleted = cleanup_old_logs(tmp_path, keep_count=2)

        assert deleted == 3
        remaining = sorted(p.name for p in tmp_path.iterdir())
        assert remaining == [
            f"{LOG_FILE_PREFIX}20240103.log",
            f"{LOG_FILE_PREFIX}20240104.log",
        ]

    def test_zero_keep_count_disables_cleanup(self, tmp_path):
        (tmp_path / f"{LOG_FILE_PREFIX}1.log").write_text("x")
        assert cleanup_old_logs(tmp_path, keep_count=0) == 0

    def test_missing_dir(self, tmp_path):
        assert cleanup_old_logs(tmp_path / "nope") == 0
