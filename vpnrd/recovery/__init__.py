"""Watchdog loop and recovery accounting."""

from .recovery_controller import (
    RecoveryAttempt,
    RecoveryController,
    RecoveryOutcome,
    RecoveryState,
    TickReport,
    WatchdogPhase,
)

__all__ = [
    'RecoveryAttempt',
    'RecoveryController',
    'RecoveryOutcome',
    'RecoveryState',
    'TickReport',
    'WatchdogPhase',
]
