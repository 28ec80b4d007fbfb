"""Configuration loading for vpnrd."""

from .settings import (
    TriState,
    VpnrdConfig,
    executable_problem,
    load_config,
    parse_duration,
)

__all__ = [
    'TriState',
    'VpnrdConfig',
    'executable_problem',
    'load_config',
    'parse_duration',
]
