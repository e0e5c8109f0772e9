"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class NotificationConfig:
    """Notification content settings used by the recorder."""

    snippet_chars: int = 60


@dataclass(frozen=True)
class FanoutConfig:
    """Push fan-out settings."""

    send_timeout_seconds: float = 10.0
    # Off keeps tokens that report invalid_token; on removes them after dispatch.
    prune_invalid_tokens: bool = False


@dataclass(frozen=True)
class ChangeStreamConfig:
    """Polling settings for the report change-stream consumer."""

    poll_interval_seconds: float = 2.0
    batch_size: int = 50
    retention_days: int = 30
    # Consecutive failures of one mutation before it is logged as CRITICAL.
    alert_after_attempts: int = 5
