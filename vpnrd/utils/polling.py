"""
Bounded polling.

The tunnel interface and the tunnel process exit can only be observed by
repeatedly sampling system state, so every wait in vpnrd goes through
poll_until(). Clock and sleep are injectable so tests run instantly.
"""

import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar('T')


@dataclass
class PollOutcome(Generic[T]):
    """Result of a poll: the first accepted value, or a timeout."""
    value: Optional[T]
    timed_out: bool
    attempts: int
    elapsed: float

    @property
    def ok(self) -> bool:
        return not self.timed_out


def poll_until(
    fn: Callable[[], Optional[T]],
    timeout: float,
    interval: float,
    backoff: float = 1.0,
    max_interval: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> PollOutcome[T]:
    """
    Call fn until it returns something other than None, or the deadline passes.

    fn is always called at least once, even with a zero timeout. Sleeps are
    clipped so the last one never overshoots the deadline.

    Args:
        fn: Sampling function; None means "not yet"
        timeout: Overall deadline in seconds
        interval: Delay between attempts
        backoff: Multiplier applied to the interval after each attempt
        max_interval: Upper bound for the interval when backing off
        clock: Monotonic clock
        sleep: Sleep function

    Returns:
        PollOutcome with the accepted value, or timed_out=True
    """
    start = clock()
    deadline = start + max(0.0, timeout)
    delay = interval
    attempts = 0

    while True:
        attempts += 1
        value = fn()
        if value is not None:
            return PollOutcome(value=value, timed_out=False,
                               attempts=attempts, elapsed=clock() - start)

        remaining = deadline - clock()
        if remaining <= 0:
            return PollOutcome(value=None, timed_out=True,
                               attempts=attempts, elapsed=clock() - start)

        sleep(min(delay, remaining))

        if backoff != 1.0:
            delay = delay * backoff
            if max_interval is not None:
                delay = min(delay, max_interval)


__all__ = ['PollOutcome', 'poll_until']
