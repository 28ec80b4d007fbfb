"""
Pytest configuration and shared fixtures for vpnrd tests.

Provides fakes for every system seam (clock, interface enumeration, the
process table, the health probe) so the components can be driven
deterministically without root, a tunnel binary or network access.
"""

import os
import shutil
import stat
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional

import pytest

# Add the parent directory to the path for imports
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from vpnrd.enforcement.ownership import OwnershipRecord
from vpnrd.health.health_probe import HealthResult
from vpnrd.network.interface_watcher import InterfaceWatcher


# ===========================================================================
# Temporary Directory Fixtures
# ===========================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    tmpdir = tempfile.mkdtemp(prefix="vpnrd_test_")
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def record(temp_dir: Path) -> OwnershipRecord:
    """Provide an OwnershipRecord inside the temporary directory."""
    return OwnershipRecord(temp_dir / "state" / "singbox.pid")


def make_script(path: Path, body: str = "exit 0", executable: bool = True) -> Path:
    """Write a shell script (executable by default)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!/bin/sh\n{body}\n")
    mode = stat.S_IRUSR | stat.S_IWUSR
    if executable:
        mode |= stat.S_IXUSR
    os.chmod(path, mode)
    return path


# ===========================================================================
# Fake Clock
# ===========================================================================

class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Provide a fake clock starting at t=1000."""
    return FakeClock()


# ===========================================================================
# Fake Interface Enumeration
# ===========================================================================

class FakeEnumerator:
    """
    Returns a scripted sequence of interface states, one per enumerate().

    The last state repeats once the script is exhausted.
    """

    def __init__(self, states: Optional[List[Dict[str, List[str]]]] = None):
        self.states = list(states or [{}])
        self.calls = 0

    def set_states(self, states: List[Dict[str, List[str]]]) -> None:
        self.states = list(states)
        self.calls = 0

    def enumerate(self) -> Dict[str, List[str]]:
        state = self.states[min(self.calls, len(self.states) - 1)]
        self.calls += 1
        return {name: list(addrs) for name, addrs in state.items()}


@pytest.fixture
def enumerator() -> FakeEnumerator:
    """Provide a fake enumerator with no interfaces."""
    return FakeEnumerator()


@pytest.fixture
def watcher(enumerator: FakeEnumerator, clock: FakeClock) -> InterfaceWatcher:
    """Provide an InterfaceWatcher over the fake enumerator and clock."""
    return InterfaceWatcher(enumerator=enumerator, poll_interval=0.2,
                            clock=clock, sleep=clock.sleep)


# ===========================================================================
# Fake Process Table
# ===========================================================================

class FakeHandle:
    """Process handle that records signals instead of sending them."""

    def __init__(self, table: 'FakeProcessTable', pid: int):
        self.table = table
        self.pid = pid

    def is_alive(self) -> bool:
        return self.table.is_alive(self.pid)

    def terminate_tree(self) -> None:
        self.table.signals.append((self.pid, 'TERM'))
        if self.pid not in self.table.ignore_term:
            self.table.alive.discard(self.pid)

    def kill_tree(self) -> None:
        self.table.signals.append((self.pid, 'KILL'))
        if self.pid not in self.table.ignore_kill:
            self.table.alive.discard(self.pid)


class FakeProcessTable:
    """In-memory process table with scripted liveness and command lines."""

    def __init__(self, next_pid: int = 4242):
        self.alive = set()
        self.cmdlines: Dict[int, List[str]] = {}
        self.signals: List[tuple] = []
        self.spawned: List[List[str]] = []
        self.ignore_term = set()
        self.ignore_kill = set()
        self.next_pid = next_pid
        self.on_spawn: Optional[Callable[[int], None]] = None

    def add_process(self, pid: int, cmdline: List[str]) -> None:
        self.alive.add(pid)
        self.cmdlines[pid] = list(cmdline)

    def is_alive(self, pid: int) -> bool:
        return pid in self.alive

    def handle_for(self, pid: int) -> FakeHandle:
        return FakeHandle(self, pid)

    def find_matching(self, argv, exclude=()):
        for pid in sorted(self.alive):
            if pid in exclude:
                continue
            cmdline = self.cmdlines.get(pid)
            if not cmdline:
                continue
            if (os.path.basename(cmdline[0]) == os.path.basename(argv[0])
                    and cmdline[1:] == list(argv[1:])):
                return pid
        return None

    def spawn(self, argv, log_file=None) -> FakeHandle:
        pid = self.next_pid
        self.next_pid += 1
        self.add_process(pid, argv)
        self.spawned.append(list(argv))
        if self.on_spawn is not None:
            self.on_spawn(pid)
        return FakeHandle(self, pid)

    def signaled_pids(self) -> List[int]:
        return [pid for pid, _ in self.signals]


@pytest.fixture
def process_table() -> FakeProcessTable:
    """Provide an empty fake process table."""
    return FakeProcessTable()


# ===========================================================================
# Fake Health Probe
# ===========================================================================

class FakeProbe:
    """Returns scripted health outcomes; the last one repeats."""

    def __init__(self, outcomes: Optional[List[bool]] = None,
                 url: str = "https://probe.test/ip"):
        self.outcomes = list(outcomes if outcomes is not None else [True])
        self.url = url
        self.calls = 0

    def check(self, url=None, timeout=None, expected_identities=None) -> HealthResult:
        ok = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        if ok:
            return HealthResult(ok=True, url=self.url, status_code=200, body="203.0.113.9")
        return HealthResult(ok=False, url=self.url, error="request failed: timed out")


@pytest.fixture
def make_probe() -> Callable[..., FakeProbe]:
    """Factory for FakeProbe with a scripted outcome list."""
    return FakeProbe


# ===========================================================================
# Markers Registration
# ===========================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Tests that spawn real processes")
    config.addinivalue_line("markers", "slow: Slow tests (>1s)")
