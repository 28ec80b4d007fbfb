"""
Tests for the RecoveryController watchdog.

The probe is scripted (FakeProbe) and the supervisor/policy are mocks, so
the threshold, budget and outcome accounting can be checked tick by tick.
"""

import os
import sys
from unittest.mock import MagicMock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import FakeProbe
from vpnrd.enforcement.policy_applier import PolicyArgs
from vpnrd.enforcement.process_supervisor import ProcessState, ProcessStatus
from vpnrd.exceptions import PolicyApplyFailed, TunnelStartFailed
from vpnrd.health.health_probe import HealthResult
from vpnrd.recovery.recovery_controller import (
    RecoveryController,
    RecoveryOutcome,
    WatchdogPhase,
)


def running_status(interface="utun7"):
    return ProcessStatus(running=True, pid=4242, owned_by_us=True,
                         interface_name=interface, state=ProcessState.OWNED)


@pytest.fixture
def supervisor():
    mock = MagicMock()
    mock.inspect.return_value = ProcessStatus()
    mock.stop_if_owned.return_value = True
    mock.ensure_running.return_value = running_status()
    return mock


@pytest.fixture
def policy():
    return MagicMock()


@pytest.fixture
def make_controller(supervisor, policy, clock):
    def factory(outcomes, **overrides):
        kwargs = dict(
            probe=FakeProbe(outcomes),
            supervisor=supervisor,
            policy=policy,
            policy_args=PolicyArgs(interface="", wan="en0", lan="en1",
                                   vpn_server_ips=["203.0.113.9"]),
            failure_threshold=3,
            max_recoveries=5,
            recover_cooldown=5,
            check_interval=10,
            clock=clock,
            sleep=clock.sleep,
        )
        kwargs.update(overrides)
        return RecoveryController(**kwargs)
    return factory


# ===========================================================================
# Threshold Crossings
# ===========================================================================

class TestThreshold:
    """Tests for when recovery is triggered."""

    def test_healthy_tick(self, make_controller, supervisor):
        """An ok probe keeps the watchdog healthy and acts on nothing."""
        controller = make_controller([True])
        report = controller.tick()
        assert report.health.ok
        assert report.phase == WatchdogPhase.HEALTHY
        assert report.recovery is None
        supervisor.stop_if_owned.assert_not_called()

    def test_degraded_below_threshold(self, make_controller, supervisor):
        """Failures below the threshold only degrade."""
        controller = make_controller([False])
        for expected in (1, 2):
            report = controller.tick()
            assert report.phase == WatchdogPhase.DEGRADED
            assert report.consecutive_failures == expected
        supervisor.ensure_running.assert_not_called()

    def test_recovery_once_per_crossing(self, make_controller, supervisor):
        """A continuous failure run recovers at failures 3 and 6 only."""
        controller = make_controller([False])
        recovered_at = []
        for n in range(1, 8):
            if controller.tick().recovery is not None:
                recovered_at.append(n)
        assert recovered_at == [3, 6]
        assert supervisor.ensure_running.call_count == 2
        assert controller.state.recoveries_used == 2

    def test_ok_resets_counter(self, make_controller, supervisor):
        """An ok probe in the middle of a run restarts the count."""
        controller = make_controller([False, False, True, False, False])
        for _ in range(5):
            controller.tick()
        assert controller.state.consecutive_failures == 2
        supervisor.ensure_running.assert_not_called()

    def test_threshold_one(self, make_controller, supervisor):
        """With threshold 1 every failure is a crossing."""
        controller = make_controller([False], failure_threshold=1)
        controller.tick()
        controller.tick()
        assert supervisor.ensure_running.call_count == 2

    @pytest.mark.parametrize("kwargs", [
        {'failure_threshold': 0},
        {'max_recoveries': -1},
    ])
    def test_invalid_limits(self, make_controller, kwargs):
        """Nonsensical limits are rejected at construction."""
        with pytest.raises(ValueError):
            make_controller([True], **kwargs)


# ===========================================================================
# Budget
# ===========================================================================

class TestBudget:
    """Tests for the lifetime recovery budget."""

    def test_budget_caps_actions(self, make_controller, supervisor, policy):
        """After the budget no stop, start or policy action happens."""
        controller = make_controller([False], failure_threshold=1, max_recoveries=2)
        reports = [controller.tick() for _ in range(5)]

        assert supervisor.stop_if_owned.call_count == 2
        assert supervisor.ensure_running.call_count == 2
        assert policy.apply.call_count == 2
        assert [r.exhausted for r in reports] == [False, False, True, True, True]
        assert controller.state.phase == WatchdogPhase.EXHAUSTED
        assert controller.state.budget_exhausted

    def test_exhausted_logged_critical(self, make_controller, caplog):
        """Exhaustion asks for manual intervention."""
        controller = make_controller([False], failure_threshold=1, max_recoveries=0)
        controller.tick()
        assert any("manual intervention required" in r.getMessage()
                   and r.levelname == "CRITICAL" for r in caplog.records)

    def test_probing_continues_after_exhaustion(self, make_controller):
        """Health is still probed and a later ok clears the failure count."""
        controller = make_controller([False, True], failure_threshold=1, max_recoveries=0)
        controller.tick()
        report = controller.tick()
        assert report.health.ok
        assert report.phase == WatchdogPhase.HEALTHY
        assert controller.probe.calls == 2

    def test_budget_never_refunded(self, make_controller):
        """A successful recovery does not give the attempt back."""
        controller = make_controller([False, False, False, True])
        controller.tick()
        controller.tick()
        controller.tick()
        assert controller.state.recoveries_used == 1
        assert controller.state.consecutive_failures == 0


# ===========================================================================
# Recovery Outcomes
# ===========================================================================

class TestRecoveryOutcomes:
    """Tests for how one recovery is accounted for."""

    def test_successful_recovery(self, make_controller, supervisor, policy, clock):
        """Actions succeed and the post-probe is ok."""
        controller = make_controller([False, False, False, True])
        for _ in range(3):
            report = controller.tick()

        attempt = report.recovery
        assert attempt.outcome == RecoveryOutcome.SUCCEEDED
        assert attempt.interface_name == "utun7"
        assert report.phase == WatchdogPhase.HEALTHY
        assert controller.state.successful_recoveries == 1
        assert clock.sleeps == [5]

        applied = policy.apply.call_args[0][0]
        assert applied.interface == "utun7"
        assert applied.wan == "en0"
        assert applied.vpn_server_ips == ["203.0.113.9"]

    def test_stop_before_start(self, make_controller, supervisor):
        """The owned tunnel is stopped before ensure_running."""
        order = []
        supervisor.stop_if_owned.side_effect = lambda: order.append('stop')

        def ensure(*args, **kwargs):
            order.append('ensure')
            return running_status()
        supervisor.ensure_running.side_effect = ensure

        make_controller([False], failure_threshold=1).tick()
        assert order == ['stop', 'ensure']

    def test_ambiguous_recovery(self, make_controller, policy):
        """Health ok after a failed action is not a success."""
        policy.apply.side_effect = PolicyApplyFailed("pfctl: syntax error")
        controller = make_controller([False, True], failure_threshold=1)

        report = controller.tick()

        assert report.recovery.outcome == RecoveryOutcome.AMBIGUOUS
        assert "syntax error" in report.recovery.error
        assert controller.state.successful_recoveries == 0
        assert controller.state.ambiguous_recoveries == 1
        assert controller.state.consecutive_failures == 0

    def test_failed_recovery(self, make_controller, supervisor):
        """A start failure with failing health stays degraded."""
        supervisor.ensure_running.side_effect = TunnelStartFailed("no interface")
        controller = make_controller([False], failure_threshold=1)

        report = controller.tick()

        assert report.recovery.outcome == RecoveryOutcome.FAILED
        assert report.phase == WatchdogPhase.DEGRADED
        assert controller.state.consecutive_failures == 1

    def test_missing_interface_skips_policy(self, make_controller, supervisor, policy):
        """No detected interface means no policy is applied."""
        supervisor.ensure_running.return_value = running_status(interface="")
        controller = make_controller([False], failure_threshold=1)

        report = controller.tick()

        policy.apply.assert_not_called()
        assert "interface not detected" in report.recovery.error

    def test_history_recorded(self, make_controller):
        """Each recovery is kept in history."""
        controller = make_controller([False], failure_threshold=1, max_recoveries=3)
        for _ in range(4):
            controller.tick()
        assert [a.number for a in controller.history] == [1, 2, 3]


# ===========================================================================
# Loop
# ===========================================================================

class TestRunLoop:
    """Tests for the periodic loop."""

    def test_runs_max_ticks(self, make_controller, clock):
        """The loop sleeps the interval between ticks, not after the last."""
        controller = make_controller([True])
        state = controller.run(max_ticks=3)
        assert state.ticks == 3
        assert clock.sleeps == [10, 10]
        assert not controller.is_running

    def test_tick_error_does_not_stop_loop(self, make_controller):
        """An unexpected error in one tick is logged and the loop goes on."""
        probe = MagicMock()
        probe.url = "https://probe.test/ip"
        probe.check.side_effect = [
            RuntimeError("boom"),
            HealthResult(ok=True, url=probe.url, status_code=200, body="203.0.113.9"),
        ]
        controller = make_controller([True], probe=probe)
        controller.run(max_ticks=2)
        assert probe.check.call_count == 2

    def test_request_stop(self, make_controller):
        """request_stop ends the loop after the current tick."""
        controller = make_controller([True])
        original = controller.tick

        def tick_then_stop():
            report = original()
            controller.request_stop()
            return report
        controller.tick = tick_then_stop

        state = controller.run()
        assert state.ticks == 1
