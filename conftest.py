"""Pytest configuration and fixtures for stackgate tests.

CRITICAL: Tests must never reach real Azure subscriptions or hosts.
"""

import os

import pytest

from stackgate.retry_config import reset_retry_config

_PROBE_ENV = (
    "STACKGATE_PROBE_INITIAL_DELAY",
    "STACKGATE_PROBE_TIMEOUT",
    "STACKGATE_PROBE_INTERVAL",
    "STACKGATE_PROBE_MAX_ATTEMPTS",
)


@pytest.fixture(scope="session", autouse=True)
def prevent_real_azure_operations():
    """Mark test mode for the whole session.

    Tests that need real Azure should explicitly check for RUN_E2E_TESTS=true.
    """
    os.environ["STACKGATE_TEST_MODE"] = "true"

    if os.environ.get("RUN_E2E_TESTS") == "true":
        print("\n" + "=" * 70)
        print("WARNING: RUN_E2E_TESTS=true - E2E tests will use REAL Azure resources!")
        print("=" * 70 + "\n")

    yield

    if "STACKGATE_TEST_MODE" in os.environ:
        del os.environ["STACKGATE_TEST_MODE"]


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep the developer's probe and retry overrides out of the tests."""
    for name in _PROBE_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("STACKGATE_RETRY_JITTER_ENABLED", "false")
    monkeypatch.setenv("STACKGATE_RETRY_AZ_INITIAL_DELAY", "0")
    reset_retry_config()
    yield
    reset_retry_config()
