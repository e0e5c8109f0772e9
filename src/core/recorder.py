"""Notification recorder (core domain)."""

from __future__ import annotations

import logging

from core.config import NotificationConfig
from core.dedup import transition_key
from core.models import NotificationDraft, RecordedNotification, ReportStatus, TransitionEvent
from core.ports import NotificationStore

LOGGER = logging.getLogger(__name__)

STATUS_LABELS = {
    ReportStatus.NEW: "New",
    ReportStatus.IN_PROGRESS: "In progress",
    ReportStatus.RESOLVED: "Resolved",
}


def build_title(status: ReportStatus) -> str:
    return STATUS_LABELS[status]


def build_body(description: str, status: ReportStatus, snippet_chars: int) -> str:
    """Embed the first ``snippet_chars`` characters of the description."""

    snippet = (description or "")[:snippet_chars]
    return f'Your report "{snippet}" is now {status.value}'


class NotificationRecorder:
    """Builds and durably persists one notification per transition."""

    def __init__(self, store: NotificationStore, config: NotificationConfig) -> None:
        self._store = store
        self._config = config

    def draft(self, event: TransitionEvent) -> NotificationDraft:
        return NotificationDraft(
            transition_key=transition_key(
                event.report_id,
                event.previous_status,
                event.new_status,
                event.mutated_at,
            ),
            recipient_id=event.report.owner_id,
            report_id=event.report_id,
            title=build_title(event.new_status),
            body=build_body(event.report.description, event.new_status, self._config.snippet_chars),
        )

    def record(self, event: TransitionEvent) -> RecordedNotification:
        """Persist the notification for ``event``.

        Store errors propagate: the notification is the source of truth and
        must not be dropped silently.
        """

        recorded = self._store.create_notification_if_absent(self.draft(event))
        if recorded.created:
            LOGGER.info(
                "Notification %s recorded for report %s (%s -> %s)",
                recorded.notification_id,
                event.report_id,
                event.previous_status.value,
                event.new_status.value,
            )
        return recorded
