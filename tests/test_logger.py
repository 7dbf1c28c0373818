"""
Tests for logging setup.
"""

import logging

import pytest


@pytest.fixture
def root_handlers():
    """Restore the root logger after each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


class TestSetupLogging:
    """Tests for installing handlers."""

    def test_reconfigure_replaces_only_own_handlers(self, root_handlers):
        from acechat.logger import setup_logging

        existing = list(root_handlers.handlers)
        host_handler = logging.NullHandler()
        root_handlers.addHandler(host_handler)

        setup_logging(level="INFO")
        setup_logging(level="WARNING")

        assert host_handler in root_handlers.handlers
        own = [h for h in root_handlers.handlers if h is not host_handler and h not in existing]
        assert len(own) == 1
        assert own[0].level == logging.WARNING
        assert root_handlers.level == logging.WARNING
        root_handlers.removeHandler(host_handler)

    def test_log_file(self, root_handlers, tmp_path):
        from acechat.logger import get_logger, setup_logging

        log_file = tmp_path / "logs" / "acechat.log"
        setup_logging(level="INFO", log_file=str(log_file))

        get_logger("acechat.test").info("Engine ready")
        for handler in root_handlers.handlers:
            handler.flush()

        assert "Engine ready" in log_file.read_text(encoding="utf-8")

    def test_set_level(self, root_handlers):
        from acechat.logger import set_level, setup_logging

        setup_logging(level="INFO")
        set_level("DEBUG")

        assert root_handlers.level == logging.DEBUG

    def test_init_from_config(self, root_handlers):
        from acechat.config import LoggingConfig
        from acechat.logger import init_logging

        init_logging(LoggingConfig(level="ERROR", file=None))

        assert root_handlers.level == logging.ERROR


class TestColoredFormatter:
    """Tests for console coloring."""

    def test_level_colored_without_touching_record(self):
        from acechat.logger import ColoredFormatter

        record = logging.LogRecord("acechat", logging.WARNING, __file__, 1, "careful", None, None)
        output = ColoredFormatter("%(levelname)s %(message)s").format(record)

        assert "\033[33mWARNING\033[0m careful" == output
        assert record.levelname == "WARNING"
