"""Unit tests for the readiness probe loop.

Time is simulated with FakeClock so the upper bound can be asserted exactly.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from stackgate.config_manager import ReadinessConfig
from stackgate.modules.readiness import (
    ProbeFailedError,
    UnreachableTargetError,
    probe_attempts,
    ssh_probe,
    wait_for_ready,
)
from stackgate.modules.ssh_connector import SSHConnectionError
from tests.fakes import FakeClock


def failing_probe(clock: FakeClock, failures: int, cost: float = 0.0):
    """Probe that fails ``failures`` times, each attempt taking ``cost`` seconds."""
    state = {"left": failures, "calls": 0}

    def probe(timeout: float) -> None:
        state["calls"] += 1
        clock.now += min(cost, timeout)
        if state["left"] > 0:
            state["left"] -= 1
            raise ProbeFailedError("Connection refused")

    probe.state = state
    return probe


class TestProbeAttempts:
    """Tests for the bounded attempt iterator."""

    def test_stops_at_first_success(self):
        clock = FakeClock()
        probe = failing_probe(clock, failures=2)

        attempts = list(probe_attempts(probe, max_attempts=5, timeout=1, interval=3, sleep=clock.sleep, clock=clock))

        assert [a.succeeded for a in attempts] == [False, False, True]
        assert clock.sleeps == [3, 3]

    def test_never_exceeds_max_attempts(self):
        clock = FakeClock()
        probe = failing_probe(clock, failures=100)

        attempts = list(probe_attempts(probe, max_attempts=4, timeout=1, interval=3, sleep=clock.sleep, clock=clock))

        assert len(attempts) == 4
        assert probe.state["calls"] == 4
        assert attempts[-1].error == "Connection refused"
        # No pause after the final attempt
        assert len(clock.sleeps) == 3

    def test_records_attempt_duration(self):
        clock = FakeClock()
        probe = failing_probe(clock, failures=1, cost=0.5)

        attempts = list(probe_attempts(probe, max_attempts=2, timeout=1, interval=0, sleep=clock.sleep, clock=clock))

        assert [a.duration for a in attempts] == [0.5, 0.5]
        assert [a.number for a in attempts] == [1, 2]

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            list(probe_attempts(lambda timeout: None, max_attempts=0, timeout=1, interval=1))


class TestWaitForReady:
    """Tests for wait_for_ready."""

    def test_success_reports_attempts(self):
        clock = FakeClock()
        config = ReadinessConfig(initial_delay=30, timeout=5, interval=10, max_attempts=30)

        result = wait_for_ready("203.0.113.4", failing_probe(clock, failures=1), config, sleep=clock.sleep, clock=clock)

        assert result.success
        assert result.attempts == 2
        assert clock.sleeps == [30, 10]
        assert result.elapsed == 40

    def test_exhausted_budget_raises(self):
        clock = FakeClock()
        config = ReadinessConfig(initial_delay=0, timeout=5, interval=10, max_attempts=3)

        with pytest.raises(UnreachableTargetError) as exc_info:
            wait_for_ready("203.0.113.4", failing_probe(clock, failures=10), config, sleep=clock.sleep, clock=clock)

        error = exc_info.value
        assert error.address == "203.0.113.4"
        assert error.attempts == 3
        assert error.last_error == "Connection refused"
        assert "after 3 attempt(s)" in str(error)

    def test_total_time_is_bounded(self):
        clock = FakeClock()
        config = ReadinessConfig(initial_delay=15, timeout=5, interval=10, max_attempts=6)
        # Every attempt uses its whole timeout
        probe = failing_probe(clock, failures=100, cost=60)

        with pytest.raises(UnreachableTargetError):
            wait_for_ready("203.0.113.4", probe, config, sleep=clock.sleep, clock=clock)

        assert clock.now <= config.initial_delay + config.upper_bound
        assert clock.now == 15 + 6 * 5 + 5 * 10


class TestSSHProbe:
    """Tests for the SSH handshake probe."""

    @patch("stackgate.modules.readiness.SSHConnector.handshake")
    def test_passes_timeout_to_handshake(self, mock_handshake):
        probe = ssh_probe("203.0.113.4", "azureuser", Path("/tmp/key"), port=2222)

        probe(7.5)

        config, timeout = mock_handshake.call_args[0]
        assert timeout == 7.5
        assert config.host == "203.0.113.4"
        assert config.port == 2222

    @patch("stackgate.modules.readiness.SSHConnector.handshake")
    def test_ssh_errors_become_probe_failures(self, mock_handshake):
        mock_handshake.side_effect = SSHConnectionError("port 22 on 203.0.113.4 is not accepting connections")
        probe = ssh_probe("203.0.113.4", "azureuser", Path("/tmp/key"))

        with pytest.raises(ProbeFailedError, match="not accepting connections"):
            probe(5)

    @patch("stackgate.modules.ssh_connector.subprocess.run", side_effect=PermissionError(13, "Permission denied"))
    @patch("stackgate.modules.ssh_connector.SSHConnector.check_port_open", return_value=True)
    def test_unrunnable_client_exhausts_budget(self, _mock_port, _mock_run):
        clock = FakeClock()
        config = ReadinessConfig(initial_delay=0, timeout=5, interval=10, max_attempts=2)
        probe = ssh_probe("203.0.113.4", "azureuser", Path("/tmp/key"))

        with pytest.raises(UnreachableTargetError) as exc_info:
            wait_for_ready("203.0.113.4", probe, config, sleep=clock.sleep, clock=clock)

        assert exc_info.value.attempts == 2
        assert "cannot run ssh" in exc_info.value.last_error
