"""
Policy Applier - hand the tunnel interface to the packet-filter script.

The rule text itself is generated and loaded by an external script; vpnrd
only invokes it with the current tunnel interface and the WAN/LAN
identifiers. The script is idempotent, so re-applying after every
recovery is safe.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..constants import Timeouts
from ..exceptions import CommandError, PolicyApplyFailed
from .command_runner import CommandResult, CommandRunner

logger = logging.getLogger(__name__)


class ArgStyle(Enum):
    """How arguments are passed to the policy script."""
    KEY_VALUE = "key_value"
    POSITIONAL = "positional"


@dataclass
class PolicyArgs:
    """Everything the policy script needs to build fail-closed rules."""
    interface: str
    wan: str
    lan: str
    vpn_server_ips: List[str] = field(default_factory=list)
    wan_dns: List[str] = field(default_factory=list)
    allow_ntp: bool = False

    def pairs(self):
        return [
            ('utun', self.interface.strip()),
            ('wan', self.wan.strip()),
            ('lan', self.lan.strip()),
            ('vpn_server_ips', ','.join(s.strip() for s in self.vpn_server_ips if s.strip())),
            ('wan_dns', ','.join(s.strip() for s in self.wan_dns if s.strip())),
            ('allow_ntp', 'true' if self.allow_ntp else 'false'),
        ]

    def to_argv(self, style: ArgStyle = ArgStyle.KEY_VALUE) -> List[str]:
        if style == ArgStyle.POSITIONAL:
            return [value for _, value in self.pairs()]
        return [f"{key}={value}" for key, value in self.pairs()]


class PolicyApplier:
    """Runs the external policy script through a CommandRunner."""

    def __init__(
        self,
        script_path: str,
        runner: Optional[CommandRunner] = None,
        timeout: float = Timeouts.COMMAND_DEFAULT,
        arg_style: ArgStyle = ArgStyle.KEY_VALUE,
    ):
        self.script_path = script_path
        self.runner = runner or CommandRunner()
        self.timeout = timeout
        self.arg_style = arg_style

    def apply(self, args: PolicyArgs) -> CommandResult:
        """
        Apply policy for args.interface.

        Raises:
            PolicyApplyFailed: missing identifiers, or the script failed
        """
        missing = [name for name, value in (('interface', args.interface),
                                            ('wan', args.wan),
                                            ('lan', args.lan))
                   if not value.strip()]
        if missing:
            raise PolicyApplyFailed(f"cannot apply policy: missing {', '.join(missing)}")

        argv = args.to_argv(self.arg_style)
        logger.info(f"Applying policy: {' '.join(argv)}")
        try:
            return self.runner.run(self.script_path, timeout=self.timeout, args=argv)
        except CommandError as e:
            raise PolicyApplyFailed(f"policy apply failed: {e}") from e


__all__ = ['ArgStyle', 'PolicyArgs', 'PolicyApplier']
