"""
VPN Router Daemon - wires the components together from configuration.

    VpnRouterDaemon
        |- CommandRunner        setup / policy / teardown scripts, pfctl
        |- InterfaceWatcher     tunnel interface readiness
        |- HealthProbe          egress check
        |- ProcessSupervisor    tunnel ownership (OwnershipRecord)
        |- PolicyApplier        packet-filter hand-off
        `- RecoveryController   watchdog loop

One instance serves one CLI invocation (up, down, run or status).
"""

import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple

from .config.settings import VpnrdConfig
from .enforcement.command_runner import CommandResult, CommandRunner
from .enforcement.ownership import OwnershipRecord
from .enforcement.policy_applier import ArgStyle, PolicyApplier, PolicyArgs
from .enforcement.process_supervisor import ProcessStatus, ProcessSupervisor
from .exceptions import ConfigInvalid, TunnelStartFailed
from .health.health_probe import HealthProbe
from .network.interface_watcher import InterfaceWatcher
from .privilege import require_root
from .recovery.recovery_controller import RecoveryController, RecoveryState
from .status import StatusSnapshot, collect_status
from .utils.debug import DebugDumper

logger = logging.getLogger(__name__)

# Printed by the setup script, e.g. "WAN: en5  LAN: en8"
_SETUP_IFACES = re.compile(r'^WAN:\s*(\S+)\s+LAN:\s*(\S+)\s*$', re.MULTILINE)


def parse_setup_interfaces(stdout: str) -> Tuple[str, str]:
    """WAN and LAN names announced by the setup script, or empty strings."""
    match = _SETUP_IFACES.search(stdout or "")
    if not match:
        return "", ""
    return match.group(1), match.group(2)


@dataclass
class UpResult:
    """Outcome of `vpnrd up`."""
    interface: str
    wan: str
    lan: str
    tunnel: Optional[ProcessStatus]
    setup: CommandResult
    policy: CommandResult


class VpnRouterDaemon:
    """Builds and drives the vpnrd components for one command."""

    def __init__(
        self,
        config: VpnrdConfig,
        debug: Optional[DebugDumper] = None,
        wan: Optional[str] = None,
        lan: Optional[str] = None,
        health_url: Optional[str] = None,
        health_timeout: Optional[float] = None,
        interval: Optional[float] = None,
        runner: Optional[CommandRunner] = None,
        watcher: Optional[InterfaceWatcher] = None,
        probe: Optional[HealthProbe] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.debug = debug or DebugDumper.disabled()
        self.wan = (wan or config.wan_if).strip()
        self.lan = (lan or config.lan_if).strip()
        self.health_timeout = health_timeout or config.health_timeout
        # A CLI health timeout also paces the loop unless an interval is given
        self.interval = interval or health_timeout or config.check_interval
        self._clock = clock
        self._sleep = sleep

        self.runner = runner or CommandRunner(debug=self.debug)
        self.watcher = watcher or InterfaceWatcher(
            prefix=config.tunnel_interface_prefix,
            clock=clock, sleep=sleep, debug=self.debug,
        )
        self.probe = probe or HealthProbe(
            url=health_url or config.health_check_url,
            timeout=self.health_timeout,
            expected_identities=config.expected_identities,
            debug=self.debug,
        )
        self.supervisor = supervisor or ProcessSupervisor(
            record=OwnershipRecord(config.singbox_pid_file),
            watcher=self.watcher,
            binary_path=config.singbox_path,
            config_path=config.singbox_config_path,
            adopt_external=config.adopt_external,
            start_timeout=config.singbox_start_timeout,
            stop_timeout=config.singbox_stop_timeout,
            log_file=Path(config.singbox_log_file) if config.singbox_log_file else None,
            clock=clock, sleep=sleep, debug=self.debug,
        )
        self.policy = PolicyApplier(
            config.vpn_router_pf_apply_path,
            runner=self.runner,
            timeout=config.command_timeout,
            arg_style=ArgStyle(config.policy_arg_style),
        )

    def policy_args(self, interface: str = "", wan: str = "", lan: str = "") -> PolicyArgs:
        return PolicyArgs(
            interface=interface,
            wan=wan or self.wan,
            lan=lan or self.lan,
            vpn_server_ips=list(self.config.vpn_server_ips),
            wan_dns=list(self.config.wan_dns_ips),
            allow_ntp=self.config.allow_wan_ntp,
        )

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def up(self) -> UpResult:
        """Run router setup, make sure the tunnel is up and apply policy."""
        require_root('up')

        setup = self.runner.run(self.config.vpn_router_setup_path,
                                timeout=self.config.command_timeout)

        wan, lan = self.wan, self.lan
        if not wan or not lan:
            found_wan, found_lan = parse_setup_interfaces(setup.stdout)
            wan = wan or found_wan
            lan = lan or found_lan
        self._require_interfaces(wan, lan)

        tunnel = None
        interface = ""
        if self.config.singbox_auto_start:
            tunnel = self.supervisor.ensure_running()
            logger.info(f"tunnel status: pid={tunnel.pid} owned={tunnel.owned_by_us} "
                        f"interface={tunnel.interface_name}")
            interface = tunnel.interface_name
        if not interface:
            raise TunnelStartFailed(
                "no tunnel interface detected (auto-start disabled or failed)"
            )

        policy = self.policy.apply(self.policy_args(interface, wan, lan))
        logger.info(f"router UP; interface={interface}")
        return UpResult(interface=interface, wan=wan, lan=lan, tunnel=tunnel,
                        setup=setup, policy=policy)

    def down(self) -> Optional[CommandResult]:
        """Stop the tunnel if we own it and restore the router."""
        require_root('down')

        self.supervisor.stop_if_owned()

        if not self.config.vpn_router_down_path:
            logger.info("No vpn_router_down_path configured; skipping teardown script")
            return None
        return self.runner.run(self.config.vpn_router_down_path,
                               timeout=self.config.command_timeout)

    def _require_interfaces(self, wan: str, lan: str) -> None:
        if not wan or not lan:
            raise ConfigInvalid(
                f"wan_if/lan_if not set (config {self.config.config_path!r}). "
                f"Set them in config.yaml or pass --wan/--lan"
            )

    def build_controller(self) -> RecoveryController:
        """
        Controller for the watchdog loop.

        Recovery re-applies policy, so WAN and LAN must come from config or
        flags here; setup output is not consulted.

        Raises:
            ConfigInvalid: wan_if or lan_if is missing
        """
        self._require_interfaces(self.wan, self.lan)
        return RecoveryController(
            probe=self.probe,
            supervisor=self.supervisor,
            policy=self.policy,
            policy_args=self.policy_args(),
            failure_threshold=self.config.failure_threshold,
            max_recoveries=self.config.max_recoveries,
            recover_cooldown=self.config.recover_cooldown,
            check_interval=self.interval,
            clock=self._clock,
            sleep=self._sleep,
            debug=self.debug,
        )

    def run_watchdog(self, controller: Optional[RecoveryController] = None,
                     max_ticks: Optional[int] = None) -> RecoveryState:
        """Run the watchdog loop (forever unless max_ticks is given)."""
        require_root('run')
        controller = controller or self.build_controller()
        return controller.run(max_ticks=max_ticks)

    def status(self) -> StatusSnapshot:
        snapshot = collect_status(
            supervisor=self.supervisor,
            watcher=self.watcher,
            probe=self.probe,
            runner=self.runner,
            config_path=self.config.config_path,
        )
        self.debug.dump("status_snapshot", snapshot)
        return snapshot


__all__ = ['UpResult', 'VpnRouterDaemon', 'parse_setup_interfaces']
