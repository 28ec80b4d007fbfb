"""
Debug dumps of intermediate results.

A DebugDumper is created once at startup (from --debug or VPNRD_DEBUG=1)
and handed to each component through its constructor. When disabled every
dump is a no-op.
"""

import json
import logging
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Optional

from ..constants import env_flag

logger = logging.getLogger(__name__)


def _to_jsonable(payload: Any) -> Any:
    if hasattr(payload, 'to_dict'):
        return payload.to_dict()
    if is_dataclass(payload) and not isinstance(payload, type):
        return asdict(payload)
    if isinstance(payload, Enum):
        return payload.value
    return payload


class DebugDumper:
    """Logs labelled JSON dumps when enabled."""

    def __init__(self, enabled: bool = False, log: Optional[logging.Logger] = None):
        self.enabled = enabled
        self._log = log or logger

    @classmethod
    def from_environment(cls, flag: bool = False) -> 'DebugDumper':
        """Enabled when the --debug flag is set or VPNRD_DEBUG is truthy."""
        return cls(enabled=flag or env_flag('DEBUG'))

    @classmethod
    def disabled(cls) -> 'DebugDumper':
        return cls(enabled=False)

    def dump(self, label: str, payload: Any) -> None:
        if not self.enabled:
            return
        try:
            text = json.dumps(_to_jsonable(payload), indent=2, sort_keys=True, default=str)
        except (TypeError, ValueError) as e:
            text = f"<unserializable {type(payload).__name__}: {e}>"
        # Dumps must be visible without --verbose
        level = logging.DEBUG if self._log.isEnabledFor(logging.DEBUG) else logging.INFO
        self._log.log(level, f"[debug] {label}:\n{text}")

    def __bool__(self) -> bool:
        return self.enabled

    def __repr__(self) -> str:
        return f"DebugDumper(enabled={self.enabled})"


__all__ = ['DebugDumper']
