"""
Utility modules for vpnrd.

Provides common utilities including:
- Error handling with context-rich logging
- Bounded polling with injectable clock
- Debug dumps of intermediate results
"""

from .error_handling import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ErrorAggregator,
    get_error_aggregator,
    handle_error,
    safe_execute,
    determine_severity,
    command_context,
)
from .polling import PollOutcome, poll_until
from .debug import DebugDumper

__all__ = [
    # Error handling
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ErrorAggregator',
    'get_error_aggregator',
    'handle_error',
    'safe_execute',
    'determine_severity',
    'command_context',
    # Polling
    'PollOutcome',
    'poll_until',
    # Debug
    'DebugDumper',
]
