"""Configuration for Azure CLI retry logic.

Transient `az` failures (throttling, flaky network, ARM conflicts while a
previous operation settles) are retried with exponential backoff. The
settings come from the environment so CI lanes can tune them without
touching stackgate.toml.
"""

import os
from dataclasses import dataclass


@dataclass
class RetryConfig:
    """Retry settings for Azure CLI calls made by the drivers."""

    az_max_attempts: int = 3
    az_initial_delay: float = 2.0
    az_max_delay: float = 30.0
    jitter_enabled: bool = True

    @classmethod
    def from_environment(cls) -> "RetryConfig":
        """Load retry configuration from environment variables.

        Environment variables (all optional):
            STACKGATE_RETRY_AZ_MAX_ATTEMPTS: Max attempts per az call (default: 3)
            STACKGATE_RETRY_AZ_INITIAL_DELAY: First backoff delay in seconds (default: 2.0)
            STACKGATE_RETRY_AZ_MAX_DELAY: Backoff cap in seconds (default: 30.0)
            STACKGATE_RETRY_JITTER_ENABLED: Enable jitter (default: true)
        """
        return cls(
            az_max_attempts=int(os.getenv("STACKGATE_RETRY_AZ_MAX_ATTEMPTS", "3")),
            az_initial_delay=float(os.getenv("STACKGATE_RETRY_AZ_INITIAL_DELAY", "2.0")),
            az_max_delay=float(os.getenv("STACKGATE_RETRY_AZ_MAX_DELAY", "30.0")),
            jitter_enabled=os.getenv("STACKGATE_RETRY_JITTER_ENABLED", "true").lower() == "true",
        )


_config: RetryConfig | None = None


def get_retry_config() -> RetryConfig:
    """Get the process-wide retry configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = RetryConfig.from_environment()
    return _config


def reset_retry_config() -> None:
    """Forget the cached configuration so the next access re-reads the environment."""
    global _config
    _config = None


__all__ = ["RetryConfig", "get_retry_config", "reset_retry_config"]
