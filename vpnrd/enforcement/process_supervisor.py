"""
Process Supervisor - start, adopt, or leave alone the tunnel process.

Ownership arbitration, in strict priority:
1. The ownership record names a live PID: the tunnel is OWNED.
2. Adoption is enabled and a live process runs exactly
   `<tunnel binary> run -c <tunnel config>`: the tunnel is ADOPTED.
   Adopted processes are never recorded and never signaled.
3. Otherwise start a new tunnel in its own session, record its PID and
   wait for its interface. If it never becomes usable, terminate it and
   remove the record.

Only PIDs read from the ownership record or spawned by this instance are
ever signaled. Termination is graduated (TERM to the process group, poll,
then KILL) and always clears the record.
"""

import json
import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

import psutil

from ..constants import Defaults, RuntimeConfig, Timeouts
from ..exceptions import (
    OwnershipRecordError,
    ProcessStopFailed,
    TunnelStartFailed,
)
from ..network.interface_watcher import InterfaceWatcher
from ..utils.debug import DebugDumper
from ..utils.polling import poll_until
from .ownership import OwnershipRecord

logger = logging.getLogger(__name__)


# =============================================================================
# STATUS TYPES
# =============================================================================

class ProcessState(Enum):
    """Who is responsible for the tunnel process."""
    NOT_RUNNING = "not_running"
    OWNED = "owned"
    ADOPTED = "adopted"


@dataclass
class ProcessStatus:
    """Snapshot of the tunnel process as seen by the supervisor."""
    running: bool = False
    pid: int = 0
    owned_by_us: bool = False
    interface_name: str = ""
    state: ProcessState = ProcessState.NOT_RUNNING

    def to_dict(self) -> Dict:
        return {
            'running': self.running,
            'pid': self.pid,
            'owned_by_us': self.owned_by_us,
            'interface_name': self.interface_name,
            'state': self.state.value,
        }


def tun_name_from_config(path: Union[str, Path]) -> Optional[str]:
    """
    Interface name pinned by a sing-box JSON config, if any.

    Looks for the first inbound with type "tun" and a non-empty
    interface_name. Raises OSError / ValueError when the file cannot be
    read or parsed.
    """
    with open(Path(path).expanduser()) as f:
        root = json.load(f)

    if not isinstance(root, dict):
        return None
    inbounds = root.get('inbounds')
    if not isinstance(inbounds, list):
        return None

    for inbound in inbounds:
        if not isinstance(inbound, dict) or inbound.get('type') != 'tun':
            continue
        name = inbound.get('interface_name')
        if isinstance(name, str) and name:
            return name
    return None


# =============================================================================
# PROCESS ACCESS
# =============================================================================

def pid_alive(pid: int) -> bool:
    """Non-blocking liveness check. Zombies are dead, permission denied is alive."""
    if pid <= 1:
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return True


class ProcessHandle:
    """
    Signaling capability for one owned process tree.

    The tunnel is started as a session leader, so its PID is also its
    process group id and group signals reach its helpers too. Where
    process groups are unavailable the tree is walked with psutil.
    """

    def __init__(
        self,
        pid: int,
        popen: Optional[subprocess.Popen] = None,
        on_exit: Optional[Callable[[int], None]] = None,
    ):
        self.pid = pid
        self._popen = popen
        self._on_exit = on_exit

    def is_alive(self) -> bool:
        # Reap our own child so it does not linger as a zombie
        if self._popen is not None and self._popen.poll() is not None:
            if self._on_exit is not None:
                self._on_exit(self.pid)
                self._on_exit = None
            return False
        return pid_alive(self.pid)

    def terminate_tree(self) -> None:
        self._signal_tree(force=False)

    def kill_tree(self) -> None:
        self._signal_tree(force=True)

    def _signal_tree(self, force: bool) -> None:
        if hasattr(os, 'killpg'):
            sig = signal.SIGKILL if force else signal.SIGTERM
            for send, target in ((os.killpg, self.pid), (os.kill, self.pid)):
                try:
                    send(target, sig)
                except ProcessLookupError:
                    pass
                except PermissionError as e:
                    logger.warning(f"Cannot signal pid {self.pid}: {e}")
            return

        try:
            parent = psutil.Process(self.pid)
            members = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            return
        for proc in members:
            try:
                if force:
                    proc.kill()
                else:
                    proc.terminate()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as e:
                logger.warning(f"Cannot signal pid {proc.pid}: {e}")

    def __repr__(self) -> str:
        return f"ProcessHandle(pid={self.pid})"


class PsutilProcessTable:
    """Live process access backed by psutil and subprocess."""

    def __init__(self):
        self._children: Dict[int, subprocess.Popen] = {}

    def is_alive(self, pid: int) -> bool:
        return self.handle_for(pid).is_alive()

    def handle_for(self, pid: int) -> ProcessHandle:
        return ProcessHandle(pid, popen=self._children.get(pid), on_exit=self._forget)

    def _forget(self, pid: int) -> None:
        popen = self._children.pop(pid, None)
        if popen is not None:
            logger.debug(f"Reaped tunnel pid {pid} (exit status {popen.returncode})")

    def find_matching(self, argv: List[str], exclude: Iterable[int] = ()) -> Optional[int]:
        """Lowest live PID whose command line is argv (binary compared by basename)."""
        skip = set(exclude) | {os.getpid()}
        wanted_binary = os.path.basename(argv[0])
        wanted_args = list(argv[1:])
        matches = []

        for proc in psutil.process_iter(['pid', 'cmdline']):
            info = proc.info
            cmdline = info.get('cmdline') or []
            if info['pid'] in skip or not cmdline:
                continue
            if os.path.basename(cmdline[0]) != wanted_binary:
                continue
            if list(cmdline[1:]) != wanted_args:
                continue
            matches.append(info['pid'])

        for pid in sorted(matches):
            if pid_alive(pid):
                return pid
        return None

    def spawn(self, argv: List[str], log_file: Optional[Path] = None) -> ProcessHandle:
        """Start argv in a new session with output appended to log_file."""
        try:
            if log_file:
                log_path = Path(log_file).expanduser()
                log_path.parent.mkdir(parents=True, exist_ok=True)
                output = open(log_path, 'ab')
            else:
                output = subprocess.DEVNULL
        except OSError as e:
            raise TunnelStartFailed(f"cannot open tunnel log file {log_file}: {e}") from e

        try:
            popen = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=subprocess.STDOUT,
                start_new_session=True,
                close_fds=True,
            )
        except OSError as e:
            raise TunnelStartFailed(f"cannot start {argv[0]}: {e}") from e
        finally:
            if output is not subprocess.DEVNULL:
                output.close()

        self._children[popen.pid] = popen
        return ProcessHandle(popen.pid, popen=popen, on_exit=self._forget)


# =============================================================================
# SUPERVISOR
# =============================================================================

class ProcessSupervisor:
    """Arbitrates ownership of the single tunnel process on this host."""

    def __init__(
        self,
        record: OwnershipRecord,
        watcher: InterfaceWatcher,
        binary_path: str = Defaults.SINGBOX_PATH,
        config_path: str = "",
        adopt_external: bool = True,
        start_timeout: float = Timeouts.TUNNEL_START,
        stop_timeout: float = Timeouts.TUNNEL_STOP,
        log_file: Optional[Union[str, Path]] = None,
        process_table=None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        debug: Optional[DebugDumper] = None,
    ):
        self.record = record
        self.watcher = watcher
        self.binary_path = binary_path
        self.config_path = config_path
        self.adopt_external = adopt_external
        self.start_timeout = start_timeout
        self.stop_timeout = stop_timeout
        self.log_file = log_file
        self.processes = process_table or PsutilProcessTable()
        self._clock = clock
        self._sleep = sleep
        self.debug = debug or DebugDumper.disabled()

    def command_line(self) -> List[str]:
        return [self.binary_path, 'run', '-c', self.config_path]

    def preferred_interface(self) -> Optional[str]:
        if not self.config_path:
            return None
        try:
            return tun_name_from_config(self.config_path)
        except (OSError, ValueError) as e:
            logger.debug(f"No pinned interface from {self.config_path}: {e}")
            return None

    # -------------------------------------------------------------------------
    # Ensure running
    # -------------------------------------------------------------------------

    def ensure_running(self, timeout: Optional[float] = None) -> ProcessStatus:
        """
        Make sure a tunnel is running and return it with its ready interface.

        Raises:
            InterfaceNotReady: an owned/adopted tunnel has no usable interface
            TunnelStartFailed: a new tunnel could not be started or never
                became usable (it has been terminated again)
            OwnershipRecordError: the stale record could not be removed
        """
        timeout = timeout if timeout is not None else self.start_timeout
        before = self.watcher.snapshot()
        preferred = self.preferred_interface()

        pid = self.record.read()
        if pid is not None:
            if self.processes.is_alive(pid):
                logger.info(f"Tunnel already running (owned pid {pid})")
                iface = self.watcher.wait_ready(before, timeout, preferred)
                return self._report(ProcessStatus(
                    running=True, pid=pid, owned_by_us=True,
                    interface_name=iface, state=ProcessState.OWNED,
                ))
            logger.info(f"Owned pid {pid} is gone; clearing stale record")
            self.record.clear()

        if self.adopt_external and self.config_path:
            external = self.processes.find_matching(self.command_line())
            if external is not None:
                logger.info(f"Adopting external tunnel pid {external} (will not signal it)")
                iface = self.watcher.wait_ready(before, timeout, preferred)
                return self._report(ProcessStatus(
                    running=True, pid=external, owned_by_us=False,
                    interface_name=iface, state=ProcessState.ADOPTED,
                ))

        return self._start_new(before, timeout, preferred)

    def _start_new(self, before, timeout: float, preferred: Optional[str]) -> ProcessStatus:
        if not self.config_path:
            raise TunnelStartFailed("no tunnel config path configured")

        argv = self.command_line()
        logger.info(f"Starting tunnel: {' '.join(argv)}")
        handle = self.processes.spawn(argv, self.log_file)

        try:
            self.record.write(handle.pid)
            iface = self.watcher.wait_ready(before, timeout, preferred,
                                            accept_existing=False)
        except Exception as e:
            logger.error(f"Tunnel pid {handle.pid} not usable: {e}; terminating it")
            self._abandon(handle)
            raise TunnelStartFailed(
                f"tunnel started (pid {handle.pid}) but not usable: {e}"
            ) from e

        logger.info(f"Tunnel started: pid={handle.pid} interface={iface}")
        return self._report(ProcessStatus(
            running=True, pid=handle.pid, owned_by_us=True,
            interface_name=iface, state=ProcessState.OWNED,
        ))

    def _abandon(self, handle: ProcessHandle) -> None:
        try:
            self._stop(handle)
        except ProcessStopFailed as e:
            logger.critical(str(e))
        try:
            self.record.clear()
        except OwnershipRecordError as e:
            logger.error(str(e))

    def _report(self, status: ProcessStatus) -> ProcessStatus:
        self.debug.dump("tunnel_status", status)
        return status

    # -------------------------------------------------------------------------
    # Stop
    # -------------------------------------------------------------------------

    def stop_if_owned(self) -> bool:
        """
        Stop the recorded tunnel, if any. Returns True if a live process was stopped.

        Raises:
            ProcessStopFailed: the process survived TERM and KILL (the
                record is cleared regardless)
        """
        pid = self.record.read()
        if pid is None:
            logger.debug("No owned tunnel to stop")
            return False

        handle = self.processes.handle_for(pid)
        try:
            if not handle.is_alive():
                logger.info(f"Owned pid {pid} already gone")
                return False
            self._stop(handle)
        finally:
            self.record.clear()
        return True

    def _stop(self, handle: ProcessHandle) -> None:
        logger.info(f"Stopping owned tunnel pid {handle.pid}")
        handle.terminate_tree()
        if self._wait_gone(handle, self.stop_timeout):
            return

        logger.warning(f"Tunnel pid {handle.pid} ignored TERM for {self.stop_timeout}s; killing")
        handle.kill_tree()
        if self._wait_gone(handle, Timeouts.TUNNEL_KILL_GRACE):
            return

        raise ProcessStopFailed(f"failed to stop tunnel pid {handle.pid}", handle.pid)

    def _wait_gone(self, handle: ProcessHandle, timeout: float) -> bool:
        outcome = poll_until(
            lambda: True if not handle.is_alive() else None,
            timeout=timeout,
            interval=RuntimeConfig.get_process_exit_poll_interval(),
            clock=self._clock,
            sleep=self._sleep,
        )
        return not outcome.timed_out

    # -------------------------------------------------------------------------
    # Inspection (non-blocking)
    # -------------------------------------------------------------------------

    def inspect(self) -> ProcessStatus:
        """Status of the recorded tunnel, without waiting or signaling."""
        pid = self.record.read()
        if pid is None:
            return ProcessStatus()
        if self.processes.is_alive(pid):
            return ProcessStatus(running=True, pid=pid, owned_by_us=True,
                                 state=ProcessState.OWNED)
        return ProcessStatus(running=False, pid=pid, owned_by_us=True,
                             state=ProcessState.NOT_RUNNING)

    def inspect_external(self) -> ProcessStatus:
        """A running tunnel matching our command line that we do not own."""
        if not self.config_path:
            return ProcessStatus()
        owned = self.record.read()
        exclude = [owned] if owned is not None else []
        pid = self.processes.find_matching(self.command_line(), exclude=exclude)
        if pid is None:
            return ProcessStatus()
        return ProcessStatus(running=True, pid=pid, owned_by_us=False,
                             state=ProcessState.ADOPTED)


__all__ = [
    'ProcessState',
    'ProcessStatus',
    'ProcessHandle',
    'PsutilProcessTable',
    'ProcessSupervisor',
    'pid_alive',
    'tun_name_from_config',
]
