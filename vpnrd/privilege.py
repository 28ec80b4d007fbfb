"""
Privilege checks.

Changing packet-filter state and starting the tunnel need root. Commands
that do so fail fast with PrivilegeError instead of half-applying.
"""

import os
import sys
import logging

from .exceptions import PrivilegeError

logger = logging.getLogger(__name__)


def is_elevated() -> bool:
    """Check if running with root privileges."""
    if sys.platform == 'win32':
        return False
    return os.geteuid() == 0


def require_root(command: str) -> None:
    """Raise PrivilegeError unless running as root."""
    if not is_elevated():
        logger.error(f"'{command}' requires root privileges")
        raise PrivilegeError(f"this command must run as root. Use: sudo vpnrd {command}")


__all__ = ['is_elevated', 'require_root']
