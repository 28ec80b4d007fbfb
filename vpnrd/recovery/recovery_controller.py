"""
Recovery Controller - the watchdog loop.

Every tick probes egress health once. Sustained failure triggers a bounded,
cooldown-paced recovery:

    HEALTHY --fail--> DEGRADED --threshold crossing--> RECOVERING
    RECOVERING --post-probe ok--> HEALTHY
    RECOVERING --post-probe fails--> DEGRADED (or EXHAUSTED at budget)

Rules:
- An ok probe resets the failure counter; nothing else does.
- A recovery runs only when the failure count reaches a multiple of the
  threshold, so one failure run triggers one recovery per crossing.
- recoveries_used only grows. Once it reaches the budget no further
  stop/start/policy actions happen, but probing continues.
- A recovery counts as successful only if its actions raised nothing AND
  the post-recovery probe is ok. Ok after an error is ambiguous: the
  failure counter resets, the success counter does not move.

The loop is single-threaded: one tick, one probe, at most one recovery.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..constants import Limits, Timeouts
from ..enforcement.policy_applier import PolicyApplier, PolicyArgs
from ..enforcement.process_supervisor import ProcessSupervisor
from ..exceptions import (
    CommandError,
    InterfaceNotReady,
    PolicyApplyFailed,
    RecoveryError,
)
from ..health.health_probe import HealthProbe, HealthResult
from ..logging_config import get_logger
from ..utils.debug import DebugDumper
from ..utils.error_handling import ErrorCategory, handle_error

logger = get_logger(__name__)


# =============================================================================
# STATE TYPES
# =============================================================================

class WatchdogPhase(Enum):
    """Where the watchdog stands."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    RECOVERING = "recovering"
    EXHAUSTED = "exhausted"


class RecoveryOutcome(Enum):
    """How one recovery attempt ended."""
    SUCCEEDED = "succeeded"
    AMBIGUOUS = "ambiguous"     # health ok, but an action raised
    FAILED = "failed"


@dataclass
class RecoveryState:
    """Lifetime counters of the watchdog. Not persisted."""
    budget: int = Limits.MAX_RECOVERIES
    consecutive_failures: int = 0
    recoveries_used: int = 0
    successful_recoveries: int = 0
    ambiguous_recoveries: int = 0
    ticks: int = 0
    phase: WatchdogPhase = WatchdogPhase.HEALTHY

    @property
    def budget_exhausted(self) -> bool:
        return self.recoveries_used >= self.budget

    def to_dict(self) -> Dict:
        return {
            'phase': self.phase.value,
            'consecutive_failures': self.consecutive_failures,
            'recoveries_used': self.recoveries_used,
            'budget': self.budget,
            'successful_recoveries': self.successful_recoveries,
            'ambiguous_recoveries': self.ambiguous_recoveries,
            'ticks': self.ticks,
        }


@dataclass
class RecoveryAttempt:
    """Record of one recovery."""
    number: int
    outcome: RecoveryOutcome
    interface_name: str = ""
    error: str = ""
    health_after: Optional[HealthResult] = None

    def to_dict(self) -> Dict:
        return {
            'number': self.number,
            'outcome': self.outcome.value,
            'interface_name': self.interface_name,
            'error': self.error,
            'health_after': self.health_after.to_dict() if self.health_after else None,
        }


@dataclass
class TickReport:
    """What happened during one tick."""
    tick: int
    health: HealthResult
    phase: WatchdogPhase
    consecutive_failures: int
    recovery: Optional[RecoveryAttempt] = None
    exhausted: bool = False


def _category_for(error: BaseException) -> ErrorCategory:
    if isinstance(error, PolicyApplyFailed):
        return ErrorCategory.POLICY
    if isinstance(error, InterfaceNotReady):
        return ErrorCategory.INTERFACE
    if isinstance(error, CommandError):
        return ErrorCategory.COMMAND
    return ErrorCategory.PROCESS


# =============================================================================
# CONTROLLER
# =============================================================================

class RecoveryController:
    """Turns health probe results into bounded corrective actions."""

    def __init__(
        self,
        probe: HealthProbe,
        supervisor: ProcessSupervisor,
        policy: PolicyApplier,
        policy_args: PolicyArgs,
        failure_threshold: int = Limits.FAILURE_THRESHOLD,
        max_recoveries: int = Limits.MAX_RECOVERIES,
        recover_cooldown: float = Timeouts.RECOVER_COOLDOWN,
        check_interval: float = Timeouts.CHECK_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        debug: Optional[DebugDumper] = None,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if max_recoveries < 0:
            raise ValueError("max_recoveries must be >= 0")

        self.probe = probe
        self.supervisor = supervisor
        self.policy = policy
        self.policy_args = policy_args
        self.failure_threshold = failure_threshold
        self.recover_cooldown = recover_cooldown
        self.check_interval = check_interval
        self._clock = clock
        self._sleep = sleep
        self.debug = debug or DebugDumper.disabled()

        self.state = RecoveryState(budget=max_recoveries)
        self.history: List[RecoveryAttempt] = []
        self._running = False

    # -------------------------------------------------------------------------
    # One tick
    # -------------------------------------------------------------------------

    def tick(self) -> TickReport:
        """Probe once and act on the result."""
        state = self.state
        state.ticks += 1
        health = self.probe.check()
        report = TickReport(tick=state.ticks, health=health,
                            phase=state.phase, consecutive_failures=0)

        if health.ok:
            if state.consecutive_failures > 0:
                logger.info(f"health recovered after {state.consecutive_failures} failures; "
                            f"body={health.body!r} latency={health.latency:.2f}s")
            state.consecutive_failures = 0
            state.phase = WatchdogPhase.HEALTHY
            return self._finish(report)

        state.consecutive_failures += 1
        logger.warning(f"health FAIL #{state.consecutive_failures}: {health.summary()}")

        crossing = state.consecutive_failures % self.failure_threshold == 0
        if not crossing:
            state.phase = self._failing_phase()
            return self._finish(report)

        if state.budget_exhausted:
            state.phase = WatchdogPhase.EXHAUSTED
            report.exhausted = True
            logger.critical(
                f"recovery budget exhausted ({state.recoveries_used}/{state.budget}); "
                f"manual intervention required"
            )
            return self._finish(report)

        report.recovery = self.recover()
        return self._finish(report)

    def _failing_phase(self) -> WatchdogPhase:
        if self.state.budget_exhausted and self.state.consecutive_failures >= self.failure_threshold:
            return WatchdogPhase.EXHAUSTED
        return WatchdogPhase.DEGRADED

    def _finish(self, report: TickReport) -> TickReport:
        report.phase = self.state.phase
        report.consecutive_failures = self.state.consecutive_failures
        return report

    # -------------------------------------------------------------------------
    # Recovery
    # -------------------------------------------------------------------------

    def recover(self) -> RecoveryAttempt:
        """
        Run one recovery cycle and account for it.

        Stops the tunnel only if we own it, ensures a tunnel is running,
        re-applies policy for its interface, waits the cooldown and
        re-probes once. Errors are logged, not raised.
        """
        state = self.state
        state.recoveries_used += 1
        number = state.recoveries_used
        state.phase = WatchdogPhase.RECOVERING
        logger.notice(f"attempting recovery #{number}/{state.budget}")
        self.debug.dump("tunnel_before_recover", self.supervisor.inspect())

        error: Optional[BaseException] = None
        interface = ""
        try:
            self.supervisor.stop_if_owned()
            status = self.supervisor.ensure_running()
            self.debug.dump("tunnel_after_ensure", status)
            if not status.running or not status.interface_name:
                raise RecoveryError("tunnel not running or interface not detected")
            interface = status.interface_name
            self.policy.apply(replace(self.policy_args, interface=interface))
        except Exception as e:
            error = e
            handle_error(e, f"recovery #{number}", category=_category_for(e),
                         additional_context={'interface': interface or '-'})
        else:
            logger.info(f"recovery #{number} executed; interface={interface}")

        self._sleep(self.recover_cooldown)
        after = self.probe.check()

        if after.ok and error is None:
            outcome = RecoveryOutcome.SUCCEEDED
            state.successful_recoveries += 1
            logger.notice(f"recovery #{number} succeeded; health OK")
        elif after.ok:
            outcome = RecoveryOutcome.AMBIGUOUS
            state.ambiguous_recoveries += 1
            logger.warning(f"health OK after failed recovery #{number} "
                           f"(not counted as recovery success)")
        else:
            outcome = RecoveryOutcome.FAILED
            logger.error(f"recovery #{number} did not restore health: {after.summary()}")

        if after.ok:
            state.consecutive_failures = 0
            state.phase = WatchdogPhase.HEALTHY
        else:
            state.phase = self._failing_phase()

        attempt = RecoveryAttempt(
            number=number,
            outcome=outcome,
            interface_name=interface,
            error=str(error) if error is not None else "",
            health_after=after,
        )
        self.history.append(attempt)
        self.debug.dump("recovery", {'attempt': attempt.to_dict(), 'state': state.to_dict()})
        return attempt

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    def run(self, max_ticks: Optional[int] = None) -> RecoveryState:
        """
        Tick every check_interval until stopped or max_ticks ticks have run.

        Unexpected errors inside a tick are logged and the loop continues.
        """
        self._running = True
        logger.info(
            f"watchdog running; interval={self.check_interval}s "
            f"health_url={self.probe.url} failure_threshold={self.failure_threshold} "
            f"max_recoveries={self.state.budget}"
        )
        done = 0
        while self._running:
            started = self._clock()
            try:
                self.tick()
            except Exception as e:
                handle_error(e, "watchdog tick", category=ErrorCategory.UNKNOWN)

            done += 1
            if max_ticks is not None and done >= max_ticks:
                break
            if not self._running:
                break

            remaining = self.check_interval - (self._clock() - started)
            if remaining > 0:
                self._sleep(remaining)

        self._running = False
        return self.state

    def run_forever(self) -> None:
        """Run until request_stop() is called (e.g. from a signal handler)."""
        self.run(max_ticks=None)

    def request_stop(self) -> None:
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running


__all__ = [
    'WatchdogPhase',
    'RecoveryOutcome',
    'RecoveryState',
    'RecoveryAttempt',
    'TickReport',
    'RecoveryController',
]
