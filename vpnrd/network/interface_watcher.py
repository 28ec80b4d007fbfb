"""
Interface Watcher - detect which tunnel interface became ready.

The tunnel process creates a virtual interface (utunN) whose unit number is
chosen by the kernel, and the host may already carry other tunnel
interfaces. There is no notification API, so readiness is detected by
taking a snapshot before acting and polling interface enumeration
afterward.

An interface is READY when it exists and carries a routable IPv4 address
(not link-local 169.254/16, not 0.0.0.0).

Selection per poll, in order:
1. A preferred name is known: only that name is ever returned.
2. An interface that is new since the snapshot, or was present but not
   ready and is ready now. Highest unit number wins.
3. Exactly one ready tunnel interface exists: accept it.

Several unrelated ready interfaces that were already ready in the snapshot
are ambiguous; the watcher keeps polling and finally raises
InterfaceNotReady rather than guessing.
"""

import ipaddress
import re
import socket
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence

import psutil

from ..constants import Defaults, RuntimeConfig
from ..exceptions import InterfaceNotReady
from ..logging_config import get_logger
from ..utils.debug import DebugDumper
from ..utils.polling import poll_until

logger = get_logger(__name__)


def is_routable_ipv4(address: str) -> bool:
    """True for an IPv4 address that is neither link-local nor unspecified."""
    try:
        ip = ipaddress.IPv4Address(address.split('%', 1)[0])
    except (ipaddress.AddressValueError, ValueError):
        return False
    return not (ip.is_link_local or ip.is_unspecified)


def unit_number(name: str) -> int:
    """utun66 -> 66. Names without a trailing number sort first."""
    match = re.search(r'(\d+)$', name)
    return int(match.group(1)) if match else -1


@dataclass(frozen=True)
class InterfaceSnapshot:
    """Tunnel interfaces present at one instant, with their IPv4 addresses."""
    addresses: Mapping[str, Sequence[str]] = field(default_factory=dict)

    @property
    def names(self) -> List[str]:
        return sorted(self.addresses, key=unit_number)

    @property
    def ready_names(self) -> List[str]:
        return [n for n in self.names if self.is_ready(n)]

    def has(self, name: str) -> bool:
        return name in self.addresses

    def is_ready(self, name: str) -> bool:
        return any(is_routable_ipv4(a) for a in self.addresses.get(name, ()))

    def to_dict(self) -> Dict:
        return {
            name: {
                'ipv4': list(self.addresses[name]),
                'ready': self.is_ready(name),
            }
            for name in self.names
        }


class PsutilInterfaceEnumerator:
    """Enumerates tunnel interfaces via psutil.net_if_addrs()."""

    def __init__(self, prefix: str = Defaults.TUNNEL_INTERFACE_PREFIX):
        self.prefix = prefix
        self._pattern = re.compile(rf'^{re.escape(prefix)}\d+$')

    def enumerate(self) -> Dict[str, List[str]]:
        result: Dict[str, List[str]] = {}
        for name, addrs in psutil.net_if_addrs().items():
            if not self._pattern.match(name):
                continue
            result[name] = [a.address for a in addrs if a.family == socket.AF_INET]
        return result


class InterfaceWatcher:
    """Snapshots tunnel interfaces and waits for one to become ready."""

    def __init__(
        self,
        enumerator=None,
        prefix: str = Defaults.TUNNEL_INTERFACE_PREFIX,
        poll_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        debug: Optional[DebugDumper] = None,
    ):
        self.enumerator = enumerator or PsutilInterfaceEnumerator(prefix)
        self.poll_interval = (poll_interval if poll_interval is not None
                              else RuntimeConfig.get_interface_poll_interval())
        self._clock = clock
        self._sleep = sleep
        self.debug = debug or DebugDumper.disabled()

    def snapshot(self) -> InterfaceSnapshot:
        """Take a snapshot of the tunnel interfaces present right now."""
        return InterfaceSnapshot(addresses=self.enumerator.enumerate())

    def list_interfaces(self) -> List[str]:
        """Names of all tunnel interfaces, ordered by unit number."""
        return self.snapshot().names

    @staticmethod
    def select_ready(
        before: InterfaceSnapshot,
        current: InterfaceSnapshot,
        preferred: Optional[str] = None,
        accept_existing: bool = True,
    ) -> Optional[str]:
        """
        Pick the ready interface by the selection rules, or None.

        accept_existing enables the single-interface fallback (rule 3). It
        is off right after starting a new tunnel, whose interface cannot
        have been ready before it started.
        """
        if preferred:
            return preferred if current.is_ready(preferred) else None

        fresh = [
            name for name in current.ready_names
            if not before.has(name) or not before.is_ready(name)
        ]
        if fresh:
            return max(fresh, key=unit_number)

        ready = current.ready_names
        if accept_existing and len(ready) == 1:
            return ready[0]

        return None

    def wait_ready(
        self,
        before: InterfaceSnapshot,
        timeout: float,
        preferred: Optional[str] = None,
        accept_existing: bool = True,
    ) -> str:
        """
        Poll until an interface is ready relative to before.

        Raises:
            InterfaceNotReady: nothing acceptable before the deadline
        """
        last = {'snapshot': before}

        def sample() -> Optional[str]:
            current = self.snapshot()
            last['snapshot'] = current
            selected = self.select_ready(before, current, preferred, accept_existing)
            logger.trace(f"poll: ready={current.ready_names} selected={selected}")
            return selected

        outcome = poll_until(
            sample,
            timeout=timeout,
            interval=self.poll_interval,
            clock=self._clock,
            sleep=self._sleep,
        )

        final = last['snapshot']
        self.debug.dump("interfaces", {
            'before': before.to_dict(),
            'after': final.to_dict(),
            'preferred': preferred,
            'selected': outcome.value,
            'attempts': outcome.attempts,
        })

        if outcome.timed_out:
            if preferred:
                message = (f"preferred tunnel interface {preferred} not ready "
                           f"within {timeout}s")
            else:
                ready = final.ready_names
                message = f"no tunnel interface became ready within {timeout}s"
                if len(ready) > 1:
                    message += f" (ambiguous: {', '.join(ready)} were already ready)"
            raise InterfaceNotReady(message, preferred=preferred,
                                    candidates=final.ready_names)

        logger.info(f"Tunnel interface ready: {outcome.value} "
                    f"(after {outcome.attempts} polls)")
        return outcome.value


__all__ = [
    'InterfaceSnapshot',
    'InterfaceWatcher',
    'PsutilInterfaceEnumerator',
    'is_routable_ipv4',
    'unit_number',
]
