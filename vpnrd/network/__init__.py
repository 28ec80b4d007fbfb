"""Tunnel interface detection."""

from .interface_watcher import (
    InterfaceSnapshot,
    InterfaceWatcher,
    PsutilInterfaceEnumerator,
    is_routable_ipv4,
    unit_number,
)

__all__ = [
    'InterfaceSnapshot',
    'InterfaceWatcher',
    'PsutilInterfaceEnumerator',
    'is_routable_ipv4',
    'unit_number',
]
