"""
Centralized Constants Module for vpnrd.

Consolidates timeouts, polling cadences, size limits and default paths
used across the daemon so they can be audited in one place.

Tunables that make sense per deployment accept an environment override
prefixed with VPNRD_ (e.g. VPNRD_INTERFACE_POLL_INTERVAL=0.5). Overrides
are bounds-checked; an invalid value falls back to the default.

Usage:
    from vpnrd.constants import Timeouts, Limits, Defaults

    runner.run(path, timeout=Timeouts.COMMAND_DEFAULT)
"""

import os
import logging
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

ENV_PREFIX = "VPNRD_"


# =============================================================================
# ENVIRONMENT VARIABLE OVERRIDE UTILITIES
# =============================================================================

T = TypeVar('T')


def _env_override(
    env_var: str,
    default: T,
    converter: Callable[[str], T] = str,
    validator: Optional[Callable[[T], bool]] = None,
    min_value: Optional[T] = None,
    max_value: Optional[T] = None,
) -> T:
    """Get a configuration value with environment variable override.

    Args:
        env_var: Environment variable name (will be prefixed with VPNRD_)
        default: Default value if env var not set
        converter: Function to convert string to target type
        validator: Optional validation function
        min_value: Optional minimum allowed value
        max_value: Optional maximum allowed value

    Returns:
        Configured value (from env var if valid, otherwise default)
    """
    full_env_var = f"{ENV_PREFIX}{env_var}"
    env_value = os.environ.get(full_env_var)

    if env_value is None:
        return default

    try:
        converted = converter(env_value)

        if min_value is not None and converted < min_value:
            logger.warning(
                f"{full_env_var}={env_value} below minimum {min_value}, using default"
            )
            return default
        if max_value is not None and converted > max_value:
            logger.warning(
                f"{full_env_var}={env_value} above maximum {max_value}, using default"
            )
            return default

        if validator is not None and not validator(converted):
            logger.warning(f"{full_env_var}={env_value} failed validation, using default")
            return default

        logger.info(f"Using {full_env_var}={converted} (override)")
        return converted

    except (ValueError, TypeError) as e:
        logger.warning(f"Invalid value for {full_env_var}: {e}, using default")
        return default


def env_flag(env_var: str) -> bool:
    """True when VPNRD_<env_var> is set to 1/true/yes."""
    return os.environ.get(f"{ENV_PREFIX}{env_var}", '').strip().lower() in ('1', 'true', 'yes')


# =============================================================================
# TIMEOUT CONSTANTS
# =============================================================================

@dataclass(frozen=True)
class Timeouts:
    """
    Timeout and cadence values in seconds.

    A single watchdog tick is bounded by the sum of the timeouts of its
    steps, so none of these may be unbounded.
    """
    # External commands (setup / pf apply / down scripts)
    COMMAND_DEFAULT: float = 20.0
    COMMAND_MINIMUM: float = 1.0
    PFCTL_INFO: float = 5.0

    # Health probe
    HEALTH_DEFAULT: float = 5.0

    # Watchdog loop
    CHECK_INTERVAL: float = 10.0
    CHECK_INTERVAL_MINIMUM: float = 1.0
    RECOVER_COOLDOWN: float = 5.0

    # Tunnel process lifecycle
    TUNNEL_START: float = 8.0
    TUNNEL_START_MINIMUM: float = 1.0
    TUNNEL_STOP: float = 8.0
    TUNNEL_KILL_GRACE: float = 1.0

    # Polling cadences (sub-second)
    INTERFACE_POLL_INTERVAL: float = 0.2
    PROCESS_EXIT_POLL_INTERVAL: float = 0.15


# =============================================================================
# LIMITS
# =============================================================================

@dataclass(frozen=True)
class Limits:
    """Bounded sizes and counts."""
    HEALTH_BODY_MAX_BYTES: int = 4 * 1024
    FAILURE_THRESHOLD: int = 3
    MAX_RECOVERIES: int = 5
    CAPTURE_LOG_CHARS: int = 2000


class Permissions(IntEnum):
    """File permission constants."""
    STANDARD_FILE = 0o644
    STANDARD_DIR = 0o755
    ANY_EXECUTE = 0o111


# =============================================================================
# DEFAULTS
# =============================================================================

@dataclass(frozen=True)
class Defaults:
    """Default values for configuration keys."""
    HEALTH_CHECK_URL: str = "https://api.ipify.org?format=text"
    SINGBOX_PATH: str = "/usr/local/bin/sing-box"
    TUNNEL_INTERFACE_PREFIX: str = "utun"


class Paths:
    """Default filesystem locations (resolved against the user's home)."""

    @staticmethod
    def default_config_path() -> Path:
        override = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if override:
            return Path(override).expanduser()
        return Path.home() / "vpn" / "config" / "vpnrd" / "config.yaml"

    @staticmethod
    def default_pid_file() -> Path:
        return Path.home() / "config" / "vpnrd" / "singbox.pid"

    @staticmethod
    def default_tunnel_log_file() -> Path:
        return Path.home() / "config" / "vpnrd" / "singbox.log"


class RuntimeConfig:
    """
    Runtime tunables that can be overridden via environment variables.
    """

    @staticmethod
    def get_interface_poll_interval() -> float:
        return _env_override(
            "INTERFACE_POLL_INTERVAL", Timeouts.INTERFACE_POLL_INTERVAL,
            converter=float, min_value=0.05, max_value=1.0,
        )

    @staticmethod
    def get_process_exit_poll_interval() -> float:
        return _env_override(
            "PROCESS_EXIT_POLL_INTERVAL", Timeouts.PROCESS_EXIT_POLL_INTERVAL,
            converter=float, min_value=0.05, max_value=1.0,
        )

    @staticmethod
    def get_health_body_max_bytes() -> int:
        return _env_override(
            "HEALTH_BODY_MAX_BYTES", Limits.HEALTH_BODY_MAX_BYTES,
            converter=int, min_value=64, max_value=1024 * 1024,
        )


__all__ = [
    'Timeouts',
    'Limits',
    'Permissions',
    'Defaults',
    'Paths',
    'RuntimeConfig',
    'env_flag',
    'ENV_PREFIX',
]
