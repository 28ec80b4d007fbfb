"""
vpnrd Exceptions

Error taxonomy shared by every vpnrd component. Everything except
ConfigInvalid and PrivilegeError is recoverable at the watchdog level:
the loop logs it and keeps ticking.
"""

from typing import Optional


class VpnrdError(Exception):
    """Base exception for all vpnrd errors."""

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason or message


class ConfigInvalid(VpnrdError):
    """Raised at startup when the configuration cannot be used."""

    def __init__(self, problems):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("config invalid: " + "; ".join(self.problems))


class PrivilegeError(VpnrdError):
    """Raised when a command needs root and we do not have it."""
    pass


class CommandError(VpnrdError):
    """Base for external command failures. Carries the captured result."""

    def __init__(self, message: str, path: str, result=None):
        super().__init__(message)
        self.path = path
        self.result = result

    @property
    def exit_code(self) -> int:
        return self.result.exit_code if self.result is not None else -1


class CommandTimeout(CommandError):
    """The command outlived its deadline. Partial output is in .result"""
    pass


class CommandFailed(CommandError):
    """The command ran and exited nonzero."""
    pass


class CommandSpawnFailed(CommandError):
    """The command could not be started (missing binary, permission)."""
    pass


class InterfaceNotReady(VpnrdError):
    """No tunnel interface became ready before the deadline."""

    def __init__(self, message: str, preferred: Optional[str] = None, candidates=None):
        super().__init__(message)
        self.preferred = preferred
        self.candidates = sorted(candidates or [])


class TunnelStartFailed(VpnrdError):
    """The tunnel process could not be started or never became usable."""
    pass


class ProcessStopFailed(VpnrdError):
    """Both graceful and forceful stop failed for an owned process."""

    def __init__(self, message: str, pid: int):
        super().__init__(message)
        self.pid = pid


class OwnershipRecordError(VpnrdError):
    """The ownership record could not be written or removed."""
    pass


class PolicyApplyFailed(VpnrdError):
    """The external policy applier did not complete successfully."""
    pass


class RecoveryError(VpnrdError):
    """A recovery cycle could not restore a usable tunnel."""
    pass


__all__ = [
    'VpnrdError',
    'ConfigInvalid',
    'PrivilegeError',
    'CommandError',
    'CommandTimeout',
    'CommandFailed',
    'CommandSpawnFailed',
    'InterfaceNotReady',
    'TunnelStartFailed',
    'ProcessStopFailed',
    'OwnershipRecordError',
    'PolicyApplyFailed',
    'RecoveryError',
]
