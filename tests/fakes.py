from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from core.errors import DeliveryFailure, StoreFailure
from core.models import (
    DeliveryErrorKind,
    NotificationDraft,
    PushMessage,
    RecordedNotification,
    Report,
    ReportMutation,
    ReportStatus,
    Role,
)

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_report(
    *,
    report_id: str = "r1",
    owner_id: str = "citizen",
    status: ReportStatus = ReportStatus.NEW,
    description: str = "Large pothole on Main Street",
    minutes: int = 0,
) -> Report:
    return Report(
        report_id=report_id,
        owner_id=owner_id,
        category="voirie",
        description=description,
        status=status,
        created_at=BASE_TIME,
        updated_at=BASE_TIME + timedelta(minutes=minutes),
    )


class FakeStore:
    """In-memory token and notification store."""

    def __init__(self) -> None:
        self.tokens: dict[str, set[str]] = {}
        self.notifications: dict[str, tuple[int, NotificationDraft]] = {}
        self.fail_notifications = False
        self.fail_tokens = False

    def add_device_token(self, user_id: str, token: str) -> None:
        self.tokens.setdefault(user_id, set()).add(token)

    def remove_device_token(self, user_id: str, token: str) -> None:
        self.tokens.get(user_id, set()).discard(token)

    def list_device_tokens(self, user_id: str) -> set[str]:
        if self.fail_tokens:
            raise StoreFailure("tokens unavailable")
        return set(self.tokens.get(user_id, set()))

    def create_notification_if_absent(self, draft: NotificationDraft) -> RecordedNotification:
        if self.fail_notifications:
            raise StoreFailure("disk full")
        if draft.transition_key in self.notifications:
            notification_id, _ = self.notifications[draft.transition_key]
            return RecordedNotification(notification_id=notification_id, created=False)
        notification_id = len(self.notifications) + 1
        self.notifications[draft.transition_key] = (notification_id, draft)
        return RecordedNotification(notification_id=notification_id, created=True)

    def list_notifications(self, user_id: str):
        return [draft for _, draft in self.notifications.values() if draft.recipient_id == user_id]


class FakeReportStore:
    def __init__(self) -> None:
        self.reports: dict[str, Report] = {}
        self.roles: dict[str, Role] = {}
        self.mutations: list[ReportMutation] = []

    def create_report(
        self,
        owner_id: str,
        category: str,
        description: str,
        latitude: Optional[float],
        longitude: Optional[float],
        photos: Sequence[str],
    ) -> Report:
        report = replace(
            make_report(report_id=f"r{len(self.reports) + 1}", owner_id=owner_id, description=description),
            category=category,
            latitude=latitude,
            longitude=longitude,
            photos=tuple(photos),
        )
        self.reports[report.report_id] = report
        return report

    def get_report(self, report_id: str) -> Optional[Report]:
        return self.reports.get(report_id)

    def list_reports(self, owner_id: Optional[str] = None) -> list[Report]:
        return [r for r in self.reports.values() if owner_id is None or r.owner_id == owner_id]

    def update_report_status(self, report_id: str, status: ReportStatus) -> Optional[ReportMutation]:
        before = self.reports.get(report_id)
        if before is None:
            return None
        after = replace(before, status=status, updated_at=before.updated_at + timedelta(minutes=1))
        self.reports[report_id] = after
        mutation = ReportMutation(
            mutation_id=len(self.mutations) + 1,
            report_id=report_id,
            before=before,
            after=after,
            mutated_at=after.updated_at,
        )
        self.mutations.append(mutation)
        return mutation

    def get_user_role(self, user_id: str) -> Optional[Role]:
        return self.roles.get(user_id)


class ScriptedPushProvider:
    """Push provider whose per-token behavior is scripted by the test.

    A behavior is "ok", "hang", a DeliveryFailure, or any other exception.
    """

    def __init__(self, behaviors: Optional[dict] = None) -> None:
        self._behaviors = behaviors or {}
        self.attempted: list[str] = []
        self.delivered: list[tuple[str, PushMessage]] = []

    async def send(self, token: str, message: PushMessage) -> None:
        self.attempted.append(token)
        behavior = self._behaviors.get(token, "ok")
        if behavior == "hang":
            await asyncio.sleep(3600)
        if isinstance(behavior, BaseException):
            raise behavior
        self.delivered.append((token, message))

    async def aclose(self) -> None:
        return None


def invalid_token(token: str) -> DeliveryFailure:
    return DeliveryFailure(f"{token} unregistered", kind=DeliveryErrorKind.INVALID_TOKEN)
