"""
Readiness Probe Module

Block until a freshly provisioned host answers an SSH handshake, with a hard
upper bound on how long that can take.

The probe loop is a plain bounded iterator so callers and tests can drive it
with a fake probe, sleep and clock:

    for attempt in probe_attempts(probe, max_attempts=30, timeout=5, interval=10):
        ...

After the initial delay, the total time is at most
``max_attempts * (timeout + interval)``: there is no pause after the final
attempt, and each attempt is bounded by ``timeout``.
"""

import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path

from stackgate.config_manager import ReadinessConfig
from stackgate.modules.ssh_connector import SSHConfig, SSHConnectionError, SSHConnector

logger = logging.getLogger(__name__)

# A probe makes one attempt within the given timeout and raises
# ProbeFailedError if the host is not ready.
Probe = Callable[[float], None]


class ProbeFailedError(Exception):
    """Raised by a probe when a single attempt fails."""

    pass


class UnreachableTargetError(Exception):
    """Raised when the readiness budget is exhausted.

    Attributes:
        address: Host that never became ready
        attempts: Number of attempts made
        last_error: Failure reported by the final attempt
    """

    def __init__(self, address: str, attempts: int, last_error: str | None = None):
        self.address = address
        self.attempts = attempts
        self.last_error = last_error
        message = f"{address} was not reachable over SSH after {attempts} attempt(s)"
        if last_error:
            message += f": {last_error}"
        super().__init__(message)


@dataclass
class ProbeAttempt:
    """Outcome of one probe attempt."""

    number: int
    duration: float
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class ProbeResult:
    """Outcome of a whole readiness wait."""

    address: str
    attempts: int
    elapsed: float
    success: bool
    last_error: str | None = None


def probe_attempts(
    probe: Probe,
    *,
    max_attempts: int,
    timeout: float,
    interval: float,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Iterator[ProbeAttempt]:
    """
    Yield probe attempts until one succeeds or the budget runs out.

    Sleeps ``interval`` between failed attempts, never after the last one.

    Args:
        probe: Callable making a single attempt bounded by ``timeout``
        max_attempts: Attempt budget (at least 1)
        timeout: Per-attempt bound passed to the probe
        interval: Pause between attempts
        sleep: Sleep function (injectable for tests)
        clock: Monotonic clock (injectable for tests)

    Yields:
        ProbeAttempt for every attempt, the last one successful or final
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for number in range(1, max_attempts + 1):
        started = clock()
        error = None
        try:
            probe(timeout)
        except ProbeFailedError as e:
            error = str(e) or "probe failed"
        attempt = ProbeAttempt(number=number, duration=clock() - started, error=error)
        yield attempt

        if attempt.succeeded:
            return
        if number < max_attempts:
            sleep(interval)


def wait_for_ready(
    address: str,
    probe: Probe,
    config: ReadinessConfig,
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> ProbeResult:
    """
    Wait the initial delay, then probe until the host is ready.

    Args:
        address: Host being probed (for messages)
        probe: Single-attempt probe
        config: Readiness budget
        sleep: Sleep function (injectable for tests)
        clock: Monotonic clock (injectable for tests)

    Returns:
        ProbeResult with success=True

    Raises:
        UnreachableTargetError: If every attempt failed
    """
    logger.info(
        f"Waiting for {address} to accept SSH "
        f"(up to {config.max_attempts} attempts, {config.initial_delay:g}s initial delay)..."
    )
    started = clock()
    if config.initial_delay > 0:
        sleep(config.initial_delay)

    last: ProbeAttempt | None = None
    for last in probe_attempts(
        probe,
        max_attempts=config.max_attempts,
        timeout=config.timeout,
        interval=config.interval,
        sleep=sleep,
        clock=clock,
    ):
        if last.succeeded:
            elapsed = clock() - started
            logger.info(f"{address} is ready (attempt {last.number}, {elapsed:.1f}s)")
            return ProbeResult(address=address, attempts=last.number, elapsed=elapsed, success=True)
        logger.debug(f"Attempt {last.number}/{config.max_attempts} failed: {last.error}")

    attempts = last.number if last else 0
    error = last.error if last else None
    logger.error(f"{address} not ready after {attempts} attempts")
    raise UnreachableTargetError(address, attempts, error)


def ssh_probe(host: str, user: str, key_path: Path, port: int = 22) -> Probe:
    """Build a probe that performs the SSH acknowledgement handshake."""
    config = SSHConfig(host=host, user=user, key_path=Path(key_path), port=port)

    def probe(timeout: float) -> None:
        try:
            SSHConnector.handshake(config, timeout)
        except SSHConnectionError as e:
            raise ProbeFailedError(str(e)) from e

    return probe


__all__ = [
    "Probe",
    "ProbeAttempt",
    "ProbeFailedError",
    "ProbeResult",
    "UnreachableTargetError",
    "probe_attempts",
    "ssh_probe",
    "wait_for_ready",
]
