"""
Configuration management for content view lifecycle runs.

All tuning is done via environment variables; the CLI may override
individual values. Connection settings (URL, credentials) live in
client/settings.py.

Invariants:
    - All settings have sensible defaults for a single Foreman install
    - Delays and poll counts are never negative
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that keep current behavior
    - Keep env var names stable, cron jobs depend on them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Tuple

logger = logging.getLogger(__name__)

DEFAULT_RESERVED_NAMES = ("Default Organization View",)


def _names(raw: str) -> Tuple[str, ...]:
    return tuple(name.strip() for name in raw.split(",") if name.strip())


@dataclass(frozen=True)
class LifecycleConfig:
    """What the run manages.

    Attributes:
        organization: Organization whose content views are managed
        target_environment: Lifecycle environment composites are promoted to
        keep_versions: Newest versions kept per content view
        pacing_delay: Seconds between consecutive publish/promote/delete triggers
        reserved_names: Server-managed content views never touched
        publish_description: Description attached to every publish
    """

    organization: str = "Default Organization"
    target_environment: str = "Production"
    keep_versions: int = 2
    pacing_delay: float = 120.0
    reserved_names: Tuple[str, ...] = DEFAULT_RESERVED_NAMES
    publish_description: str = "Published by cv-lifecycle"

    @classmethod
    def from_env(cls) -> LifecycleConfig:
        """Load configuration from environment variables."""
        return cls(
            organization=os.getenv("CV_ORGANIZATION", "Default Organization"),
            target_environment=os.getenv("CV_TARGET_ENVIRONMENT", "Production"),
            keep_versions=int(os.getenv("CV_KEEP_VERSIONS", "2")),
            pacing_delay=float(os.getenv("CV_PACING_DELAY", "120")),
            reserved_names=_names(
                os.getenv("CV_RESERVED_NAMES", ",".join(DEFAULT_RESERVED_NAMES))
            ),
            publish_description=os.getenv("CV_PUBLISH_DESCRIPTION", "Published by cv-lifecycle"),
        )


@dataclass(frozen=True)
class WatcherConfig:
    """Background task polling configuration.

    Attributes:
        poll_interval: Seconds between task status queries
        max_polls: Status queries before giving up
        fallback_wait: Fixed wait when task status is unavailable
        publish_label: Task label of content view publishes
        promote_label: Task label of content view promotions
    """

    poll_interval: float = 30.0
    max_polls: int = 60
    fallback_wait: float = 300.0
    publish_label: str = "Actions::Katello::ContentView::Publish"
    promote_label: str = "Actions::Katello::ContentView::Promote"

    @classmethod
    def from_env(cls) -> WatcherConfig:
        """Load configuration from environment variables."""
        return cls(
            poll_interval=float(os.getenv("CV_POLL_INTERVAL", "30")),
            max_polls=int(os.getenv("CV_MAX_POLLS", "60")),
            fallback_wait=float(os.getenv("CV_FALLBACK_WAIT", "300")),
            publish_label=os.getenv(
                "CV_PUBLISH_TASK_LABEL", "Actions::Katello::ContentView::Publish"
            ),
            promote_label=os.getenv(
                "CV_PROMOTE_TASK_LABEL", "Actions::Katello::ContentView::Promote"
            ),
        )


@dataclass(frozen=True)
class RetryConfig:
    """Bounded retry configuration.

    Attributes:
        health_check_attempts: Health checks before the run aborts
        health_check_delay: Seconds between health checks
        promote_attempts: Attempts per promotion before recording failure
        promote_delay: Seconds between promotion attempts
    """

    health_check_attempts: int = 3
    health_check_delay: float = 10.0
    promote_attempts: int = 3
    promote_delay: float = 30.0

    @classmethod
    def from_env(cls) -> RetryConfig:
        """Load configuration from environment variables."""
        return cls(
            health_check_attempts=int(os.getenv("CV_HEALTH_ATTEMPTS", "3")),
            health_check_delay=float(os.getenv("CV_HEALTH_DELAY", "10")),
            promote_attempts=int(os.getenv("CV_PROMOTE_ATTEMPTS", "3")),
            promote_delay=float(os.getenv("CV_PROMOTE_DELAY", "30")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass(frozen=True)
class ManagerConfig:
    """Complete run configuration.

    Attributes:
        lifecycle: What is managed and how aggressively
        watcher: Task polling
        retry: Health check and promotion retries
        observability: Logging
    """

    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ManagerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If a value is missing or invalid.
        """
        config = cls(
            lifecycle=LifecycleConfig.from_env(),
            watcher=WatcherConfig.from_env(),
            retry=RetryConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.lifecycle.organization:
            raise ValueError("CV_ORGANIZATION is required")
        if not self.lifecycle.target_environment:
            raise ValueError("CV_TARGET_ENVIRONMENT is required")

        delays = {
            "CV_PACING_DELAY": self.lifecycle.pacing_delay,
            "CV_POLL_INTERVAL": self.watcher.poll_interval,
            "CV_FALLBACK_WAIT": self.watcher.fallback_wait,
            "CV_HEALTH_DELAY": self.retry.health_check_delay,
            "CV_PROMOTE_DELAY": self.retry.promote_delay,
        }
        for name, value in delays.items():
            if value < 0:
                raise ValueError(f"{name} must not be negative, got {value}")

        counts = {
            "CV_MAX_POLLS": self.watcher.max_polls,
            "CV_HEALTH_ATTEMPTS": self.retry.health_check_attempts,
            "CV_PROMOTE_ATTEMPTS": self.retry.promote_attempts,
        }
        for name, value in counts.items():
            if value < 1:
                raise ValueError(f"{name} must be at least 1, got {value}")

        if self.lifecycle.keep_versions <= 0:
            logger.warning(
                f"CV_KEEP_VERSIONS={self.lifecycle.keep_versions}: every unprotected "
                "version is eligible for deletion"
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Run configuration loaded",
            extra={
                "organization": self.lifecycle.organization,
                "target_environment": self.lifecycle.target_environment,
                "keep_versions": self.lifecycle.keep_versions,
                "pacing_delay": self.lifecycle.pacing_delay,
                "reserved_names": list(self.lifecycle.reserved_names),
                "poll_interval": self.watcher.poll_interval,
                "max_polls": self.watcher.max_polls,
                "fallback_wait": self.watcher.fallback_wait,
                "health_check_attempts": self.retry.health_check_attempts,
                "promote_attempts": self.retry.promote_attempts,
            },
        )
