"""
Ownership Record - the on-disk marker of the tunnel process vpnrd started.

The record is a text file holding a single PID. It is the only state that
survives a daemon restart and the sole source of truth for "we own the
tunnel": only PIDs read from here (or just spawned) are ever signaled.

An absent file, an unparsable value, or a PID <= 1 all mean "no owned
process".
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from ..constants import Permissions
from ..exceptions import OwnershipRecordError

logger = logging.getLogger(__name__)


class OwnershipRecord:
    """PID marker file with atomic writes."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    def read(self) -> Optional[int]:
        """Return the recorded PID, or None when there is no usable record."""
        try:
            raw = self.path.read_text().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Cannot read ownership record {self.path}: {e}")
            return None

        try:
            pid = int(raw)
        except ValueError:
            logger.warning(f"Ignoring unparsable ownership record {self.path}: {raw!r}")
            return None

        if pid <= 1:
            logger.warning(f"Ignoring invalid pid {pid} in {self.path}")
            return None
        return pid

    def write(self, pid: int) -> None:
        """Persist pid atomically (temp file + rename)."""
        if pid <= 1:
            raise OwnershipRecordError(f"refusing to record invalid pid {pid}")

        temp_path = self.path.with_name(self.path.name + '.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, 'w') as f:
                f.write(f"{pid}\n")
                f.flush()
                os.fsync(f.fileno())
            os.chmod(temp_path, Permissions.STANDARD_FILE)
            os.replace(temp_path, self.path)
        except OSError as e:
            try:
                temp_path.unlink()
            except FileNotFoundError:
                pass
            raise OwnershipRecordError(
                f"cannot write ownership record {self.path}: {e}"
            ) from e

        logger.debug(f"Recorded owned pid {pid} in {self.path}")

    def clear(self) -> None:
        """Remove the record. Missing is fine."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise OwnershipRecordError(
                f"cannot remove ownership record {self.path}: {e}"
            ) from e
        logger.debug(f"Cleared ownership record {self.path}")

    def exists(self) -> bool:
        return self.path.exists()

    def __repr__(self) -> str:
        return f"OwnershipRecord({str(self.path)!r})"


__all__ = ['OwnershipRecord']
