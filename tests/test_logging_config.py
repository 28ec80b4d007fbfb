"""
Tests for logging setup: level selection, formatters and VPNRD_* variables.
"""

import json
import logging
import os
import sys

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from vpnrd.logging_config import (
    NOTICE,
    TRACE,
    VERBOSE,
    VpnrdFormatter,
    VpnrdLogger,
    configure_from_environment,
    get_logger,
    setup_logging,
)


@pytest.fixture
def root_logger():
    """Restore the root handlers and level after setup_logging replaces them."""
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        if handler not in saved_handlers:
            handler.close()
    for handler in saved_handlers:
        root.addHandler(handler)
    root.setLevel(saved_level)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ('VPNRD_VERBOSE', 'VPNRD_TRACE', 'VPNRD_LOG_FILE',
                 'VPNRD_LOG_NO_CONSOLE', 'VPNRD_LOG_JSON'):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def make_record(name: str, level: int, msg: str) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, msg, (), None)


# ===========================================================================
# Level Selection
# ===========================================================================

class TestSetupLogging:
    """Tests for root level and handler installation."""

    def test_default_is_info(self, root_logger):
        setup_logging()
        assert root_logger.level == logging.INFO
        assert len(root_logger.handlers) == 1

    def test_verbose_level(self, root_logger):
        setup_logging(verbose=True)
        assert root_logger.level == VERBOSE

    def test_trace_wins_over_verbose(self, root_logger):
        """Trace implies verbose and selects the lowest level."""
        setup_logging(verbose=True, trace=True)
        assert root_logger.level == TRACE

    def test_replaces_existing_handlers(self, root_logger):
        """Calling setup twice does not duplicate output."""
        setup_logging()
        setup_logging()
        assert len(root_logger.handlers) == 1

    def test_log_file_only(self, root_logger, temp_dir):
        """With the console off, records go to the log file alone."""
        log_path = temp_dir / "logs" / "vpnrd.log"
        setup_logging(log_file=str(log_path), console=False)
        assert [type(h) for h in root_logger.handlers] == [logging.FileHandler]

        get_logger('vpnrd.health.egress').info("egress ok")
        root_logger.handlers[0].flush()

        line = log_path.read_text().strip()
        assert "[health]" in line
        assert line.endswith("egress ok")


# ===========================================================================
# Formatter
# ===========================================================================

class TestVpnrdFormatter:
    """Tests for text and JSON rendering."""

    def test_text_includes_level_and_feature(self):
        formatter = VpnrdFormatter(use_colors=False)
        text = formatter.format(make_record('vpnrd.recovery.recovery_controller',
                                            NOTICE, "budget exhausted"))
        assert "NOTICE" in text
        assert "[recovery]" in text
        assert text.endswith("budget exhausted")

    def test_json_is_one_object_per_record(self):
        formatter = VpnrdFormatter(use_colors=False, json_format=True)
        data = json.loads(formatter.format(
            make_record('vpnrd.network.interface_watcher', TRACE, "poll")))
        assert data['level'] == "TRACE"
        assert data['feature'] == "network"
        assert data['logger'] == "vpnrd.network.interface_watcher"
        assert data['message'] == "poll"

    def test_json_carries_exception(self):
        formatter = VpnrdFormatter(use_colors=False, json_format=True)
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord('vpnrd', logging.ERROR, __file__, 1,
                                       "failed", (), sys.exc_info())
        data = json.loads(formatter.format(record))
        assert "RuntimeError: boom" in data['exception']


# ===========================================================================
# Environment Configuration
# ===========================================================================

class TestConfigureFromEnvironment:
    """Tests for the VPNRD_* logging variables."""

    def test_defaults(self, root_logger, clean_env):
        configure_from_environment()
        assert root_logger.level == logging.INFO
        assert [type(h) for h in root_logger.handlers] == [logging.StreamHandler]

    def test_env_selects_trace_file_and_json(self, root_logger, clean_env, temp_dir):
        log_path = temp_dir / "vpnrd.log"
        clean_env.setenv('VPNRD_TRACE', "1")
        clean_env.setenv('VPNRD_LOG_FILE', str(log_path))
        clean_env.setenv('VPNRD_LOG_NO_CONSOLE', "yes")
        clean_env.setenv('VPNRD_LOG_JSON', "true")

        configure_from_environment()

        assert root_logger.level == TRACE
        assert len(root_logger.handlers) == 1
        handler = root_logger.handlers[0]
        assert isinstance(handler, logging.FileHandler)
        assert handler.formatter.json_format

    def test_explicit_flags_win(self, root_logger, clean_env):
        """A CLI flag enables verbose even when the environment is silent."""
        configure_from_environment(verbose=True)
        assert root_logger.level == VERBOSE

    def test_false_values_ignored(self, root_logger, clean_env):
        clean_env.setenv('VPNRD_VERBOSE', "0")
        configure_from_environment()
        assert root_logger.level == logging.INFO


# ===========================================================================
# Logger Class
# ===========================================================================

class TestVpnrdLogger:
    """Tests for the extra levels."""

    def test_get_logger_class(self):
        logger = get_logger('vpnrd.tests.logger_class')
        assert isinstance(logger, VpnrdLogger)

    def test_extra_levels_respect_threshold(self, caplog):
        logger = get_logger('vpnrd.tests.levels')
        with caplog.at_level(VERBOSE, logger='vpnrd.tests.levels'):
            logger.trace("hidden")
            logger.verbose("shown")
            logger.notice("also shown")
        assert [r.levelname for r in caplog.records] == ["VERBOSE", "NOTICE"]
