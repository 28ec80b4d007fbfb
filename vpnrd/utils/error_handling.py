"""
Error Handling Utilities for vpnrd

Consistent, context-rich error handling for the watchdog loop:
1. Detailed error logging with context (target path, interface, exit code,
   captured output) so failures can be diagnosed without reproducing them
2. Error categorization and severity levels
3. Stack trace preservation
4. Deduplication of errors that repeat every tick

USAGE:
    from vpnrd.utils.error_handling import (
        handle_error,
        ErrorCategory,
        safe_execute,
    )

    # Context manager usage
    with safe_execute("pf info", ErrorCategory.COMMAND) as result:
        result.value = read_pf_info()

    # Direct error handling
    try:
        supervisor.ensure_running()
    except VpnrdError as e:
        handle_error(e, "ensure tunnel", ErrorCategory.PROCESS)
"""

import logging
import sys
import time
import threading
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..constants import Limits

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Categories of errors for proper handling and reporting."""
    # Configuration / startup errors (fatal)
    CONFIG = "configuration"

    # Missing privileges (fatal)
    PRIVILEGE = "privilege"

    # External command execution
    COMMAND = "command"

    # Tunnel interface detection
    INTERFACE = "interface"

    # Tunnel process lifecycle
    PROCESS = "process"

    # Egress / health probing
    NETWORK = "network"

    # Policy applier
    POLICY = "policy"

    # File system errors
    FILESYSTEM = "filesystem"

    # Unknown/uncategorized
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    # Informational - operation can continue
    INFO = "info"

    # Warning - something unexpected but not critical
    WARNING = "warning"

    # Error - operation failed but the loop keeps running
    ERROR = "error"

    # Critical - fail-closed posture may be at risk
    CRITICAL = "critical"

    # Fatal - the daemon must exit
    FATAL = "fatal"


@dataclass
class ErrorContext:
    """Detailed context information for an error."""
    error: BaseException
    category: ErrorCategory
    severity: ErrorSeverity
    operation: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    thread_name: str = field(default_factory=lambda: threading.current_thread().name)
    stack_trace: str = ""
    additional_context: Dict[str, Any] = field(default_factory=dict)
    platform: str = field(default_factory=lambda: sys.platform)

    def __post_init__(self):
        if not self.stack_trace and self.error.__traceback__ is not None:
            self.stack_trace = ''.join(traceback.format_exception(
                type(self.error), self.error, self.error.__traceback__
            ))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            'error_type': type(self.error).__name__,
            'error_message': str(self.error),
            'category': self.category.value,
            'severity': self.severity.value,
            'operation': self.operation,
            'timestamp': self.timestamp,
            'thread_name': self.thread_name,
            'stack_trace': self.stack_trace,
            'additional_context': self.additional_context,
            'platform': self.platform,
        }

    def format_log_message(self, include_trace: bool = False) -> str:
        """Format a detailed log message."""
        lines = [
            f"ERROR [{self.severity.value.upper()}] in {self.operation}",
            f"  Category: {self.category.value}",
            f"  Type: {type(self.error).__name__}",
            f"  Message: {self.error}",
        ]

        if self.additional_context:
            lines.append("  Context:")
            for key, value in self.additional_context.items():
                lines.append(f"    {key}: {value}")

        if include_trace and self.stack_trace:
            lines.append("  Stack Trace:")
            for line in self.stack_trace.split('\n'):
                if line.strip():
                    lines.append(f"    {line}")

        return '\n'.join(lines)


class ErrorAggregator:
    """
    Aggregates and tracks errors for reporting.

    Thread-safe error collection with deduplication: the watchdog ticks
    every few seconds and a persistent failure would otherwise flood the log.
    """

    def __init__(self, max_errors: int = 1000, dedup_window_seconds: float = 60):
        self._errors: List[ErrorContext] = []
        self._lock = threading.Lock()
        self._max_errors = max_errors
        self._dedup_window = dedup_window_seconds
        self._error_counts: Dict[str, int] = {}
        self._last_error_times: Dict[str, float] = {}

    def add_error(self, context: ErrorContext) -> bool:
        """
        Add an error to the aggregator.

        Returns True if error was added, False if deduplicated.
        """
        error_key = f"{context.category.value}:{type(context.error).__name__}:{context.operation}"
        current_time = time.monotonic()

        with self._lock:
            last_time = self._last_error_times.get(error_key)
            if last_time is not None and current_time - last_time < self._dedup_window:
                self._error_counts[error_key] = self._error_counts.get(error_key, 0) + 1
                return False

            self._errors.append(context)
            self._last_error_times[error_key] = current_time
            self._error_counts[error_key] = 1

            if len(self._errors) > self._max_errors:
                self._errors = self._errors[-self._max_errors:]

            return True

    def get_error_summary(self) -> Dict[str, Any]:
        """Get a summary of aggregated errors."""
        with self._lock:
            by_category: Dict[str, int] = {}
            by_severity: Dict[str, int] = {}

            for ctx in self._errors:
                cat = ctx.category.value
                sev = ctx.severity.value
                by_category[cat] = by_category.get(cat, 0) + 1
                by_severity[sev] = by_severity.get(sev, 0) + 1

            return {
                'total_errors': len(self._errors),
                'by_category': by_category,
                'by_severity': by_severity,
                'deduplicated_counts': dict(self._error_counts),
            }

    def clear(self):
        """Clear all aggregated errors."""
        with self._lock:
            self._errors.clear()
            self._error_counts.clear()
            self._last_error_times.clear()


_global_aggregator = ErrorAggregator()


def get_error_aggregator() -> ErrorAggregator:
    """Get the global error aggregator instance."""
    return _global_aggregator


def determine_severity(
    error: BaseException,
    category: ErrorCategory,
) -> ErrorSeverity:
    """
    Determine the severity level for an error based on type and category.
    """
    error_type = type(error).__name__

    if isinstance(error, (SystemExit, KeyboardInterrupt)):
        return ErrorSeverity.FATAL

    if category in (ErrorCategory.CONFIG, ErrorCategory.PRIVILEGE):
        return ErrorSeverity.FATAL

    # A failed stop leaves an owned tunnel in an unknown state
    if error_type == 'ProcessStopFailed':
        return ErrorSeverity.CRITICAL

    if category == ErrorCategory.POLICY:
        return ErrorSeverity.CRITICAL

    if isinstance(error, PermissionError):
        return ErrorSeverity.ERROR

    if isinstance(error, FileNotFoundError):
        return ErrorSeverity.WARNING

    if 'timeout' in error_type.lower() or 'timed out' in str(error).lower():
        return ErrorSeverity.WARNING

    return ErrorSeverity.ERROR


def _tail(text: str, limit: int = Limits.CAPTURE_LOG_CHARS) -> str:
    value = (text or "").strip()
    if len(value) <= limit:
        return value
    return value[-limit:]


def command_context(error: BaseException) -> Dict[str, Any]:
    """Extract path / exit code / captured output from a command error."""
    context: Dict[str, Any] = {}
    path = getattr(error, 'path', None)
    if path:
        context['path'] = path
    result = getattr(error, 'result', None)
    if result is not None:
        context['exit_code'] = result.exit_code
        if result.stdout:
            context['stdout'] = _tail(result.stdout)
        if result.stderr:
            context['stderr'] = _tail(result.stderr)
    return context


def handle_error(
    error: BaseException,
    operation: str,
    category: ErrorCategory = ErrorCategory.UNKNOWN,
    severity: Optional[ErrorSeverity] = None,
    additional_context: Optional[Dict[str, Any]] = None,
    reraise: bool = False,
    log_level: Optional[int] = None,
) -> ErrorContext:
    """
    Handle an error with comprehensive logging and tracking.

    Args:
        error: The exception that occurred
        operation: Name of the operation that failed
        category: Category of the error
        severity: Severity level (auto-determined if not provided)
        additional_context: Additional context information
        reraise: Whether to re-raise the exception after handling
        log_level: Override the log level (auto-determined if not provided)

    Returns:
        ErrorContext with full error details
    """
    if severity is None:
        severity = determine_severity(error, category)

    context_data = command_context(error)
    context_data.update(additional_context or {})

    context = ErrorContext(
        error=error,
        category=category,
        severity=severity,
        operation=operation,
        additional_context=context_data,
    )

    was_added = _global_aggregator.add_error(context)

    if log_level is None:
        log_level_map = {
            ErrorSeverity.INFO: logging.INFO,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.FATAL: logging.CRITICAL,
        }
        log_level = log_level_map.get(severity, logging.ERROR)

    if was_added:
        logger.log(log_level, context.format_log_message(
            include_trace=logger.isEnabledFor(logging.DEBUG)
        ))
    else:
        logger.log(
            log_level,
            f"[DEDUPLICATED] {operation}: {type(error).__name__}: {error}"
        )

    if reraise:
        raise error

    return context


@contextmanager
def safe_execute(
    operation: str,
    category: ErrorCategory = ErrorCategory.UNKNOWN,
    default_return: Any = None,
    reraise: bool = False,
    additional_context: Optional[Dict[str, Any]] = None,
):
    """
    Context manager for best-effort execution with error handling.

    Usage:
        with safe_execute("listing interfaces", ErrorCategory.INTERFACE) as result:
            result.value = watcher.snapshot()

    Args:
        operation: Name of the operation
        category: Error category
        default_return: Default value to return on error
        reraise: Whether to re-raise exceptions
        additional_context: Additional context information
    """
    class Result:
        def __init__(self):
            self.value = default_return
            self.error: Optional[ErrorContext] = None
            self.success = True

    result = Result()

    try:
        yield result
    except Exception as e:
        result.success = False
        result.error = handle_error(
            e,
            operation,
            category=category,
            additional_context=additional_context,
            reraise=reraise,
        )
        result.value = default_return


__all__ = [
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ErrorAggregator',
    'get_error_aggregator',
    'handle_error',
    'safe_execute',
    'determine_severity',
    'command_context',
]
