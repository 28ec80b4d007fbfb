"""
vpnrd - Tunnel Router Daemon

Supervises a sing-box tunnel, tracks the utun interface it creates, and
keeps egress traffic flowing through it with bounded, fail-closed recovery.
"""

__version__ = "0.2.0"

# Installs the VpnrdLogger class before any vpnrd logger is created
from .logging_config import get_logger, setup_logging, configure_from_environment

from .constants import (
    Timeouts,
    Limits,
    Permissions,
    Defaults,
    Paths,
    RuntimeConfig,
)

from .exceptions import (
    VpnrdError,
    ConfigInvalid,
    PrivilegeError,
    CommandError,
    CommandTimeout,
    CommandFailed,
    CommandSpawnFailed,
    InterfaceNotReady,
    TunnelStartFailed,
    ProcessStopFailed,
    OwnershipRecordError,
    PolicyApplyFailed,
    RecoveryError,
)

from .config import TriState, VpnrdConfig, load_config
from .enforcement import (
    CommandResult,
    CommandRunner,
    OwnershipRecord,
    PolicyApplier,
    PolicyArgs,
    ProcessState,
    ProcessStatus,
    ProcessSupervisor,
)
from .network import InterfaceSnapshot, InterfaceWatcher
from .health import HealthProbe, HealthResult
from .recovery import RecoveryController, RecoveryState, WatchdogPhase
from .utils import DebugDumper, PollOutcome, poll_until
from .vpn_router_daemon import VpnRouterDaemon

__all__ = [
    '__version__',
    # Logging
    'get_logger',
    'setup_logging',
    'configure_from_environment',
    # Constants
    'Timeouts',
    'Limits',
    'Permissions',
    'Defaults',
    'Paths',
    'RuntimeConfig',
    # Exceptions
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
    # Components
    'TriState',
    'VpnrdConfig',
    'load_config',
    'CommandResult',
    'CommandRunner',
    'OwnershipRecord',
    'PolicyApplier',
    'PolicyArgs',
    'ProcessState',
    'ProcessStatus',
    'ProcessSupervisor',
    'InterfaceSnapshot',
    'InterfaceWatcher',
    'HealthProbe',
    'HealthResult',
    'RecoveryController',
    'RecoveryState',
    'WatchdogPhase',
    'DebugDumper',
    'PollOutcome',
    'poll_until',
    'VpnRouterDaemon',
]
