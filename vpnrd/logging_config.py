"""
Logging Configuration for vpnrd.

Centralized logging setup with verbose/trace toggles, per-feature logger
names and text or JSON formatting.

Usage:
    from vpnrd.logging_config import setup_logging, get_logger

    # Setup at daemon startup
    setup_logging(verbose=True)

    # Get feature-specific logger
    logger = get_logger('vpnrd.recovery')
    logger.notice("recovery budget exhausted")
"""

import os
import sys
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional


# =============================================================================
# LOGGING LEVELS
# =============================================================================

TRACE = 5
VERBOSE = 15
NOTICE = 25


logging.addLevelName(TRACE, 'TRACE')
logging.addLevelName(VERBOSE, 'VERBOSE')
logging.addLevelName(NOTICE, 'NOTICE')


# =============================================================================
# CUSTOM FORMATTER
# =============================================================================

class VpnrdFormatter(logging.Formatter):
    """Formatter with color support and optional JSON output."""

    COLORS = {
        'TRACE': '\033[90m',      # Gray
        'DEBUG': '\033[36m',      # Cyan
        'VERBOSE': '\033[94m',    # Light blue
        'INFO': '\033[32m',       # Green
        'NOTICE': '\033[33m',     # Yellow
        'WARNING': '\033[33;1m',  # Bold yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[31;1m', # Bold red
        'RESET': '\033[0m',
    }

    def __init__(self, use_colors: bool = True, json_format: bool = False):
        self.use_colors = use_colors and sys.stdout.isatty()
        self.json_format = json_format
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        if self.json_format:
            return self._format_json(record)
        return self._format_text(record)

    def _format_text(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        level_name = record.levelname

        if self.use_colors:
            color = self.COLORS.get(level_name, '')
            reset = self.COLORS['RESET']
            level_str = f"{color}{level_name:8}{reset}"
        else:
            level_str = f"{level_name:8}"

        feature_str = f"[{self._extract_feature(record.name)}]"

        text = f"{timestamp} {level_str} {feature_str:20} {record.getMessage()}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text

    def _format_json(self, record: logging.LogRecord) -> str:
        data = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'feature': self._extract_feature(record.name),
        }

        if record.exc_info:
            data['exception'] = self.formatException(record.exc_info)

        return json.dumps(data, default=str)

    def _extract_feature(self, logger_name: str) -> str:
        """Extract feature area from logger name."""
        parts = logger_name.split('.')
        if len(parts) >= 2:
            # vpnrd.health.health_probe -> health
            return parts[1] if parts[0] == 'vpnrd' else parts[0]
        return parts[0] or 'core'


# =============================================================================
# CUSTOM LOGGER CLASS
# =============================================================================

class VpnrdLogger(logging.Logger):
    """Logger with TRACE/VERBOSE/NOTICE levels."""

    def trace(self, msg: str, *args, **kwargs):
        """Log at TRACE level (ultra-verbose)."""
        if self.isEnabledFor(TRACE):
            self._log(TRACE, msg, args, **kwargs)

    def verbose(self, msg: str, *args, **kwargs):
        """Log at VERBOSE level."""
        if self.isEnabledFor(VERBOSE):
            self._log(VERBOSE, msg, args, **kwargs)

    def notice(self, msg: str, *args, **kwargs):
        """Log at NOTICE level."""
        if self.isEnabledFor(NOTICE):
            self._log(NOTICE, msg, args, **kwargs)


logging.setLoggerClass(VpnrdLogger)


# =============================================================================
# SETUP AND CONFIGURATION
# =============================================================================

def setup_logging(
    verbose: bool = False,
    trace: bool = False,
    log_file: Optional[str] = None,
    console: bool = True,
    json_format: bool = False,
) -> None:
    """
    Initialize the logging system.

    Args:
        verbose: Enable verbose logging (VERBOSE level)
        trace: Enable trace logging (TRACE level, implies verbose)
        log_file: Optional file path for log output
        console: Enable console output (stderr)
        json_format: Use JSON format for logs
    """
    if trace:
        base_level = TRACE
    elif verbose:
        base_level = VERBOSE
    else:
        base_level = logging.INFO

    root = logging.getLogger()
    root.setLevel(base_level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(base_level)
        console_handler.setFormatter(VpnrdFormatter(
            use_colors=True,
            json_format=json_format
        ))
        root.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(base_level)
        file_handler.setFormatter(VpnrdFormatter(
            use_colors=False,
            json_format=json_format
        ))
        root.addHandler(file_handler)


def get_logger(name: str) -> VpnrdLogger:
    """
    Get a feature-aware logger.

    Args:
        name: Logger name (e.g., 'vpnrd.recovery')
    """
    logging.setLoggerClass(VpnrdLogger)
    return logging.getLogger(name)


# =============================================================================
# ENVIRONMENT VARIABLE CONFIGURATION
# =============================================================================

def _env_true(name: str) -> bool:
    return os.environ.get(name, '').lower() in ('1', 'true', 'yes')


def configure_from_environment(
    verbose: bool = False,
    trace: bool = False,
    log_file: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """Configure logging from VPNRD_* environment variables.

    Explicit arguments (from CLI flags) win over the environment.
    """
    setup_logging(
        verbose=verbose or _env_true('VPNRD_VERBOSE'),
        trace=trace or _env_true('VPNRD_TRACE'),
        log_file=log_file or os.environ.get('VPNRD_LOG_FILE'),
        console=not _env_true('VPNRD_LOG_NO_CONSOLE'),
        json_format=json_format or _env_true('VPNRD_LOG_JSON'),
    )


__all__ = [
    'TRACE',
    'VERBOSE',
    'NOTICE',
    'setup_logging',
    'configure_from_environment',
    'get_logger',
    'VpnrdLogger',
    'VpnrdFormatter',
]
