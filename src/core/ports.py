"""Ports (interfaces) used by the core.

Ports define the minimal contracts for storage and push adapters so that
the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from core.models import (
    Notification,
    NotificationDraft,
    PushMessage,
    RecordedNotification,
    Report,
    ReportMutation,
    ReportStatus,
    Role,
)


class ReportStore(Protocol):
    """Report and user reads/writes needed by the caller-facing operations."""

    def create_report(
        self,
        owner_id: str,
        category: str,
        description: str,
        latitude: Optional[float],
        longitude: Optional[float],
        photos: Sequence[str],
    ) -> Report:
        ...

    def get_report(self, report_id: str) -> Optional[Report]:
        ...

    def list_reports(self, owner_id: Optional[str] = None) -> list[Report]:
        ...

    def update_report_status(self, report_id: str, status: ReportStatus) -> Optional[ReportMutation]:
        ...

    def get_user_role(self, user_id: str) -> Optional[Role]:
        ...


class DeviceTokenStore(Protocol):
    """Per-user token set with atomic merge primitives."""

    def add_device_token(self, user_id: str, token: str) -> None:
        """Set-union of ``{token}`` into the user's token set."""

    def remove_device_token(self, user_id: str, token: str) -> None:
        """Set-difference of ``{token}`` from the user's token set."""

    def list_device_tokens(self, user_id: str) -> set[str]:
        ...


class NotificationStore(Protocol):
    def create_notification_if_absent(self, draft: NotificationDraft) -> RecordedNotification:
        """Insert unless a notification with the same transition key exists."""

    def list_notifications(self, user_id: str) -> list[Notification]:
        ...


class ChangeFeed(Protocol):
    """Append-only log of report mutations plus per-consumer cursors."""

    def list_mutations_after(self, mutation_id: int, limit: int) -> list[ReportMutation]:
        ...

    def get_stream_cursor(self, consumer: str) -> Optional[int]:
        ...

    def set_stream_cursor(self, consumer: str, mutation_id: int) -> None:
        ...

    def prune_mutations(self, ttl_days: int) -> int:
        ...


class PushProvider(Protocol):
    """Opaque push transport.

    ``send`` returns on success and raises ``DeliveryFailure`` carrying an
    error kind on failure.
    """

    async def send(self, token: str, message: PushMessage) -> None:
        ...
