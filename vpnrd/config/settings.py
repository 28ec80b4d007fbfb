"""
Daemon configuration.

Loaded from a YAML file (PyYAML safe_load). Durations accept Go-style
strings ("10s", "500ms", "1m30s") or plain numbers of seconds. Missing keys
fall back to defaults; every problem found during parsing and validation
is collected and reported in a single ConfigInvalid.
"""

import logging
import os
import re
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..constants import Defaults, Limits, Paths, Permissions, Timeouts
from ..exceptions import ConfigInvalid

logger = logging.getLogger(__name__)


# =============================================================================
# VALUE PARSING
# =============================================================================

class TriState(Enum):
    """A boolean setting that may be left unset."""
    UNSET = "unset"
    ENABLED = "enabled"
    DISABLED = "disabled"

    @classmethod
    def from_value(cls, value: Any) -> 'TriState':
        if value is None:
            return cls.UNSET
        if isinstance(value, bool):
            return cls.ENABLED if value else cls.DISABLED
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ('', 'unset'):
                return cls.UNSET
            if lowered in ('true', 'yes', 'on', '1', 'enabled'):
                return cls.ENABLED
            if lowered in ('false', 'no', 'off', '0', 'disabled'):
                return cls.DISABLED
        raise ValueError(f"expected true/false, got {value!r}")

    def resolve(self, default: bool) -> bool:
        if self is TriState.UNSET:
            return default
        return self is TriState.ENABLED


_DURATION_UNITS = {
    'ns': 1e-9,
    'us': 1e-6,
    'µs': 1e-6,
    'ms': 1e-3,
    's': 1.0,
    'm': 60.0,
    'h': 3600.0,
}
_DURATION_PART = re.compile(r'(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)')


def parse_duration(value: Union[str, int, float]) -> float:
    """Parse "1m30s" / "500ms" / 10 into seconds."""
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"negative duration {value!r}")
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration {value!r}")

    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if seconds < 0:
            raise ValueError(f"negative duration {value!r}")
        return seconds

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return total


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [s.strip() for s in value.split(',') if s.strip()]
    if isinstance(value, (list, tuple)):
        return [str(s).strip() for s in value if str(s).strip()]
    raise ValueError(f"expected a list, got {type(value).__name__}")


def _bool(value: Any) -> bool:
    return TriState.from_value(value).resolve(False)


def _int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"expected an integer, got {value!r}")
    return int(value)


def _str(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _path(value: Any) -> str:
    text = _str(value)
    return os.path.expanduser(text) if text else ""


# =============================================================================
# CONFIG
# =============================================================================

@dataclass
class VpnrdConfig:
    """Resolved daemon configuration."""
    # Interfaces (may be discovered from setup script output)
    wan_if: str = ""
    lan_if: str = ""

    # Router scripts
    vpn_router_setup_path: str = ""
    vpn_router_pf_apply_path: str = ""
    vpn_router_down_path: str = ""

    # Watchdog
    health_check_url: str = Defaults.HEALTH_CHECK_URL
    check_interval: float = Timeouts.CHECK_INTERVAL
    command_timeout: float = Timeouts.COMMAND_DEFAULT
    failure_threshold: int = Limits.FAILURE_THRESHOLD
    recover_cooldown: float = Timeouts.RECOVER_COOLDOWN
    max_recoveries: int = Limits.MAX_RECOVERIES
    health_timeout: float = Timeouts.HEALTH_DEFAULT

    # Tunnel process
    singbox_path: str = Defaults.SINGBOX_PATH
    singbox_config_path: str = ""
    singbox_auto_start: bool = False
    singbox_adopt_external: TriState = TriState.UNSET
    singbox_start_timeout: float = Timeouts.TUNNEL_START
    singbox_stop_timeout: float = Timeouts.TUNNEL_STOP
    singbox_pid_file: str = field(default_factory=lambda: str(Paths.default_pid_file()))
    singbox_log_file: str = field(default_factory=lambda: str(Paths.default_tunnel_log_file()))
    tunnel_interface_prefix: str = Defaults.TUNNEL_INTERFACE_PREFIX

    # Policy
    vpn_server_ips: List[str] = field(default_factory=list)
    wan_dns_ips: List[str] = field(default_factory=list)
    allow_wan_ntp: bool = False
    policy_arg_style: str = "key_value"
    expected_egress_ips: Optional[List[str]] = None

    # Where it was loaded from
    config_path: str = ""

    @property
    def adopt_external(self) -> bool:
        return self.singbox_adopt_external.resolve(True)

    @property
    def expected_identities(self) -> List[str]:
        """Egress IPs the health endpoint must report; the VPN servers unless set."""
        if self.expected_egress_ips is not None:
            return list(self.expected_egress_ips)
        return list(self.vpn_server_ips)

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    _PARSERS = {
        'wan_if': _str,
        'lan_if': _str,
        'vpn_router_setup_path': _path,
        'vpn_router_pf_apply_path': _path,
        'vpn_router_down_path': _path,
        'health_check_url': _str,
        'check_interval': parse_duration,
        'command_timeout': parse_duration,
        'failure_threshold': _int,
        'recover_cooldown': parse_duration,
        'max_recoveries': _int,
        'health_timeout': parse_duration,
        'singbox_path': _path,
        'singbox_config_path': _path,
        'singbox_auto_start': _bool,
        'singbox_adopt_external': TriState.from_value,
        'singbox_start_timeout': parse_duration,
        'singbox_stop_timeout': parse_duration,
        'singbox_pid_file': _path,
        'singbox_log_file': _path,
        'tunnel_interface_prefix': _str,
        'vpn_server_ips': _string_list,
        'wan_dns_ips': _string_list,
        'allow_wan_ntp': _bool,
        'policy_arg_style': _str,
        'expected_egress_ips': _string_list,
    }

    # Keys where an empty value means "use the default"
    _DEFAULT_WHEN_EMPTY = {
        'health_check_url', 'singbox_path', 'singbox_pid_file',
        'singbox_log_file', 'tunnel_interface_prefix', 'policy_arg_style',
    }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], config_path: str = "") -> 'VpnrdConfig':
        """Build and validate a config. Raises ConfigInvalid listing every problem."""
        config = cls(config_path=config_path)
        problems: List[str] = []
        known = {f.name for f in fields(cls)} - {'config_path'}

        for key, raw in (data or {}).items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key: {key}")
                continue
            parser = cls._PARSERS[key]
            try:
                value = parser(raw)
            except (TypeError, ValueError) as e:
                problems.append(f"{key}: {e}")
                continue
            if key in cls._DEFAULT_WHEN_EMPTY and value == "":
                continue
            setattr(config, key, value)

        problems.extend(config.validate())
        if problems:
            raise ConfigInvalid(problems)
        return config

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(self) -> List[str]:
        """Return the list of problems (empty when valid)."""
        problems: List[str] = []

        if self.singbox_auto_start:
            if not self.singbox_path:
                problems.append("singbox_path is required when singbox_auto_start=true")
            if not self.singbox_config_path:
                problems.append("singbox_config_path is required when singbox_auto_start=true")
            if self.singbox_start_timeout < Timeouts.TUNNEL_START_MINIMUM:
                problems.append("singbox_start_timeout must be >= 1s")

        if (self.singbox_adopt_external is TriState.ENABLED
                and not self.singbox_config_path):
            problems.append("singbox_config_path is required when singbox_adopt_external=true "
                            "(needed to adopt external process)")

        for key in ('vpn_router_setup_path', 'vpn_router_pf_apply_path'):
            path = getattr(self, key)
            if not path:
                problems.append(f"{key} is required")
                continue
            error = executable_problem(path)
            if error:
                problems.append(f"{key} invalid: {error}")

        if self.vpn_router_down_path:
            error = executable_problem(self.vpn_router_down_path)
            if error:
                problems.append(f"vpn_router_down_path invalid: {error}")

        if self.check_interval < Timeouts.CHECK_INTERVAL_MINIMUM:
            problems.append("check_interval must be >= 1s")
        if self.command_timeout < Timeouts.COMMAND_MINIMUM:
            problems.append("command_timeout must be >= 1s")
        if self.health_timeout <= 0:
            problems.append("health_timeout must be > 0")
        if self.singbox_stop_timeout <= 0:
            problems.append("singbox_stop_timeout must be > 0")
        if self.failure_threshold < 1:
            problems.append("failure_threshold must be >= 1")
        if self.max_recoveries < 0:
            problems.append("max_recoveries must be >= 0")
        if self.policy_arg_style not in ('key_value', 'positional'):
            problems.append(f"policy_arg_style must be key_value or positional, "
                            f"got {self.policy_arg_style!r}")

        return problems

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = value.value if isinstance(value, Enum) else value
        return data


def executable_problem(path: str) -> Optional[str]:
    """Why path is not a usable script, or None."""
    try:
        st = os.stat(path)
    except OSError as e:
        return f"{path!r} not accessible: {e.strerror or e}"
    if os.path.isdir(path):
        return f"{path!r} is a directory (expected a file)"
    if not st.st_mode & Permissions.ANY_EXECUTE:
        return f"{path!r} is not executable (run: chmod +x {path})"
    return None


def load_config(path: Optional[Union[str, Path]] = None) -> VpnrdConfig:
    """
    Load, default and validate the YAML config at path.

    Raises:
        ConfigInvalid: unreadable file, bad YAML, or invalid values
    """
    config_path = Path(path).expanduser() if path else Paths.default_config_path()

    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigInvalid(f"cannot read config {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigInvalid(f"cannot parse yaml {config_path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigInvalid(f"{config_path}: top level must be a mapping")

    config = VpnrdConfig.from_dict(data, config_path=str(config_path))
    logger.debug(f"Loaded config from {config_path}")
    return config


__all__ = [
    'TriState',
    'VpnrdConfig',
    'executable_problem',
    'load_config',
    'parse_duration',
]
