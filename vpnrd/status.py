"""
Status snapshot for `vpnrd status`.

Everything here is best-effort: a part that cannot be collected is
recorded as an error in the snapshot and the rest is still reported.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from .constants import Timeouts
from .enforcement.command_runner import CommandRunner
from .enforcement.process_supervisor import ProcessStatus, ProcessSupervisor
from .exceptions import CommandError
from .health.health_probe import HealthProbe, HealthResult
from .network.interface_watcher import InterfaceWatcher
from .utils.error_handling import ErrorCategory, safe_execute

logger = logging.getLogger(__name__)

PFCTL_PATH = "pfctl"


@dataclass
class StatusSnapshot:
    """Point-in-time view of the router."""
    time_utc: str
    config_path: str
    owned: ProcessStatus = field(default_factory=ProcessStatus)
    external: ProcessStatus = field(default_factory=ProcessStatus)
    interfaces: List[str] = field(default_factory=list)
    pf_enabled: bool = False
    pf_info: str = ""
    pf_error: str = ""
    health: Optional[HealthResult] = None
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'time_utc': self.time_utc,
            'config_path': self.config_path,
            'owned': self.owned.to_dict(),
            'external': self.external.to_dict(),
            'interfaces': list(self.interfaces),
            'pf_enabled': self.pf_enabled,
            'pf_info': self.pf_info,
            'pf_error': self.pf_error,
            'health': self.health.to_dict() if self.health else None,
            'errors': dict(self.errors),
        }

    def format_lines(self) -> List[str]:
        lines = [
            f"[vpnrd] time: {self.time_utc}",
            f"[vpnrd] config: {self.config_path}",
        ]
        if self.owned.owned_by_us:
            lines.append(f"[vpnrd] tunnel: owned pid={self.owned.pid} running={self.owned.running}")
        else:
            lines.append("[vpnrd] tunnel: no owned process recorded")
        if self.external.running:
            lines.append(f"[vpnrd] tunnel: external pid={self.external.pid} (matches config)")
        lines.append(f"[vpnrd] interfaces: {', '.join(self.interfaces) if self.interfaces else 'none'}")
        lines.append(f"[vpnrd] pf: enabled={self.pf_enabled}")
        if self.pf_error:
            lines.append(f"[vpnrd] pf err: {self.pf_error}")
        if self.health is not None:
            lines.append(f"[vpnrd] health: {self.health.summary()}")
        for part, error in sorted(self.errors.items()):
            lines.append(f"[vpnrd] {part} unavailable: {error}")
        return lines


def pf_info(runner: CommandRunner, timeout: float = Timeouts.PFCTL_INFO) -> Tuple[bool, str, str]:
    """(enabled, info, error) from `pfctl -s info`. Never raises."""
    try:
        result = runner.run(PFCTL_PATH, timeout=timeout, args=['-s', 'info'])
    except CommandError as e:
        info = e.result.stdout.strip() if e.result is not None else ""
        error = ""
        if e.result is not None:
            error = e.result.stderr.strip()
        return False, info, error or str(e)

    info = result.stdout.strip()
    return 'Status: Enabled' in info, info, ""


def collect_status(
    supervisor: ProcessSupervisor,
    watcher: InterfaceWatcher,
    probe: HealthProbe,
    runner: CommandRunner,
    config_path: str = "",
) -> StatusSnapshot:
    """Gather every part of the snapshot; failures are recorded, not raised."""
    snapshot = StatusSnapshot(
        time_utc=datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ'),
        config_path=config_path,
    )

    parts = (
        ('owned', ErrorCategory.PROCESS, supervisor.inspect),
        ('external', ErrorCategory.PROCESS, supervisor.inspect_external),
        ('interfaces', ErrorCategory.INTERFACE, watcher.list_interfaces),
    )
    for name, category, collect in parts:
        with safe_execute(f"status {name}", category) as result:
            setattr(snapshot, name, collect())
        if not result.success:
            snapshot.errors[name] = str(result.error.error)

    snapshot.pf_enabled, snapshot.pf_info, snapshot.pf_error = pf_info(runner)
    snapshot.health = probe.check()
    return snapshot


__all__ = ['StatusSnapshot', 'collect_status', 'pf_info']
