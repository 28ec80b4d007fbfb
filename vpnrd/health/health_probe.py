"""
Health Probe - is traffic really leaving through the tunnel?

One HTTP GET against an endpoint that echoes the caller's public IP. The
probe is OK when the endpoint answers 200 with a non-empty body and, when
expected egress identities are configured, the body is exactly one of
them. A reachable endpoint reporting the wrong egress IP means traffic is
leaking around the tunnel and counts as a failure.

No retries: the watchdog decides what repeated failures mean.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import requests

from ..constants import Defaults, RuntimeConfig, Timeouts
from ..utils.debug import DebugDumper

logger = logging.getLogger(__name__)


@dataclass
class HealthResult:
    """Outcome of one probe."""
    ok: bool
    url: str
    status_code: int = 0
    body: str = ""
    latency: float = 0.0
    error: str = ""
    expected: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'ok': self.ok,
            'url': self.url,
            'status_code': self.status_code,
            'body': self.body,
            'latency': round(self.latency, 3),
            'error': self.error,
            'expected': list(self.expected),
        }

    def summary(self) -> str:
        return (f"ok={self.ok} status={self.status_code} latency={self.latency:.2f}s "
                f"body={self.body!r} err={self.error!r}")


class HealthProbe:
    """Egress connectivity check over requests."""

    def __init__(
        self,
        url: str = Defaults.HEALTH_CHECK_URL,
        timeout: float = Timeouts.HEALTH_DEFAULT,
        expected_identities: Sequence[str] = (),
        session: Optional[requests.Session] = None,
        max_body_bytes: Optional[int] = None,
        debug: Optional[DebugDumper] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.url = url
        self.timeout = timeout
        self.expected_identities = [s.strip() for s in expected_identities if s.strip()]
        self.session = session or requests.Session()
        self.max_body_bytes = max_body_bytes or RuntimeConfig.get_health_body_max_bytes()
        self.debug = debug or DebugDumper.disabled()
        self._clock = clock

    def check(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        expected_identities: Optional[Sequence[str]] = None,
    ) -> HealthResult:
        """Probe once. Never raises; failures are reported in the result."""
        url = url or self.url
        timeout = timeout if timeout is not None else self.timeout
        if expected_identities is None:
            expected = self.expected_identities
        else:
            expected = [s.strip() for s in expected_identities if s.strip()]

        result = self._fetch(url, timeout)
        result.expected = list(expected)

        if result.ok and expected and result.body not in expected:
            result.ok = False
            result.error = (f"unexpected egress identity {result.body!r} "
                            f"(expected one of {expected})")

        self.debug.dump("health", result)
        return result

    def _fetch(self, url: str, timeout: float) -> HealthResult:
        result = HealthResult(ok=False, url=url)
        started = self._clock()
        deadline = started + timeout

        try:
            response = self.session.get(url, timeout=timeout, stream=True)
        except requests.RequestException as e:
            result.latency = self._clock() - started
            result.error = f"request failed: {e}"
            return result

        try:
            result.status_code = response.status_code
            body = bytearray()
            # One byte per read: a socket read returns as soon as any data
            # arrives, so the deadline is checked between reads.
            for chunk in response.iter_content(chunk_size=1):
                if self._clock() > deadline:
                    result.error = f"timed out after {timeout}s"
                    break
                if not chunk:
                    continue
                body.extend(chunk)
                if len(body) >= self.max_body_bytes:
                    break
            result.body = bytes(body[:self.max_body_bytes]).decode(
                'utf-8', errors='replace').strip()
        except requests.RequestException as e:
            result.error = f"reading body failed: {e}"
        finally:
            response.close()
            result.latency = self._clock() - started

        if not result.error and self._clock() > deadline:
            result.error = f"timed out after {timeout}s"

        if not result.error:
            if result.status_code == 200 and result.body:
                result.ok = True
            elif result.status_code != 200:
                result.error = f"unexpected status {result.status_code}"
            else:
                result.error = "empty body"

        return result


__all__ = ['HealthProbe', 'HealthResult']
