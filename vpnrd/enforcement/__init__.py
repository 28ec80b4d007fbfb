"""
Enforcement layer: external commands, tunnel process ownership and the
packet-filter policy hand-off.
"""

from .command_runner import CommandResult, CommandRunner
from .ownership import OwnershipRecord
from .policy_applier import ArgStyle, PolicyApplier, PolicyArgs
from .process_supervisor import (
    ProcessHandle,
    ProcessState,
    ProcessStatus,
    ProcessSupervisor,
    PsutilProcessTable,
    pid_alive,
    tun_name_from_config,
)

__all__ = [
    'CommandResult',
    'CommandRunner',
    'OwnershipRecord',
    'ArgStyle',
    'PolicyApplier',
    'PolicyArgs',
    'ProcessHandle',
    'ProcessState',
    'ProcessStatus',
    'ProcessSupervisor',
    'PsutilProcessTable',
    'pid_alive',
    'tun_name_from_config',
]
