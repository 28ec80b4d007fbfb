"""
Command Runner - run an external program with a hard deadline.

Every script vpnrd drives (router setup, policy apply, teardown, pfctl)
goes through CommandRunner.run(), which:
1. Enforces a deadline (the child is killed when it expires)
2. Captures stdout and stderr separately
3. Classifies the outcome: success, nonzero exit, timeout, spawn failure
4. Logs the exit code of every invocation, and the full output in debug mode

There are no retries here; retry policy belongs to the caller.
"""

import subprocess
import time
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Union

from ..constants import Timeouts
from ..exceptions import CommandFailed, CommandSpawnFailed, CommandTimeout
from ..logging_config import get_logger
from ..utils.debug import DebugDumper

logger = get_logger(__name__)


@dataclass
class CommandResult:
    """Captured outcome of one invocation. exit_code -1 means never ran."""
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> Dict:
        return {
            'exit_code': self.exit_code,
            'stdout': self.stdout,
            'stderr': self.stderr,
            'duration': round(self.duration, 3),
        }


def _decode(data: Union[bytes, str, None]) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode('utf-8', errors='replace')
    return data


class CommandRunner:
    """Runs external commands with a deadline and captured output."""

    def __init__(self, debug: Optional[DebugDumper] = None):
        self.debug = debug or DebugDumper.disabled()

    def run(
        self,
        path: str,
        timeout: float = Timeouts.COMMAND_DEFAULT,
        args: Sequence[str] = (),
        check: bool = True,
    ) -> CommandResult:
        """
        Run path with args.

        Raises:
            CommandSpawnFailed: the program could not be started
            CommandTimeout: the deadline passed; partial output is attached
            CommandFailed: nonzero exit and check=True
        """
        argv = [path, *args]
        logger.verbose(f"exec: {' '.join(argv)} (timeout={timeout}s)")
        started = time.monotonic()

        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                errors='replace',
                timeout=timeout,
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired as e:
            result = CommandResult(
                exit_code=-1,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr),
                duration=time.monotonic() - started,
            )
            logger.warning(f"{path}: timed out after {timeout}s")
            self.debug.dump(f"command {path} (timeout)", result)
            raise CommandTimeout(f"{path}: timed out after {timeout}s", path, result) from e
        except OSError as e:
            # Missing binary, not executable, bad interpreter
            result = CommandResult(exit_code=-1, stderr=str(e),
                                   duration=time.monotonic() - started)
            logger.error(f"{path}: could not start: {e}")
            raise CommandSpawnFailed(f"{path}: could not start: {e}", path, result) from e

        result = CommandResult(
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            duration=time.monotonic() - started,
        )

        logger.info(f"{path}: exit={result.exit_code} ({result.duration:.2f}s)")
        self.debug.dump(f"command {path}", result)

        if check and result.exit_code != 0:
            detail = result.stderr.strip() or result.stdout.strip()
            message = f"{path}: exit status {result.exit_code}"
            if detail:
                message = f"{message}: {detail.splitlines()[-1]}"
            raise CommandFailed(message, path, result)

        return result


__all__ = ['CommandResult', 'CommandRunner']
