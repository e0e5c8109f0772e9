"""Status transition detector.

This module is integration-agnostic. It reacts to report mutations delivered
by any change stream and relies only on the recorder, the registry, and the
fan-out engine.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from core.config import FanoutConfig
from core.errors import StoreFailure
from core.fanout import PushFanoutEngine
from core.models import (
    DeliveryErrorKind,
    FanoutResult,
    PushMessage,
    Report,
    TransitionEvent,
    TransitionOutcome,
)
from core.recorder import NotificationRecorder
from core.registry import DeviceTokenRegistry

LOGGER = logging.getLogger(__name__)


class StatusTransitionDetector:
    """Turns meaningful status changes into one notification and a push fan-out."""

    def __init__(
        self,
        recorder: NotificationRecorder,
        registry: DeviceTokenRegistry,
        fanout: PushFanoutEngine,
        config: FanoutConfig,
    ) -> None:
        self._recorder = recorder
        self._registry = registry
        self._fanout = fanout
        self._config = config

    async def on_report_mutated(
        self,
        report_id: str,
        before: Optional[Report],
        after: Report,
        mutated_at: datetime,
    ) -> Optional[TransitionOutcome]:
        """Handle one (possibly redelivered) report mutation.

        Returns None when the mutation is not a status transition.
        """

        # Creation and same-status writes are not transitions.
        if before is None or before.status == after.status:
            return None

        event = TransitionEvent(
            report_id=report_id,
            previous_status=before.status,
            new_status=after.status,
            report=after,
            mutated_at=mutated_at,
        )

        # The durable write must finish before any push; StoreFailure propagates.
        recorded = self._recorder.record(event)
        if not recorded.created:
            LOGGER.info(
                "Duplicate delivery for report %s (%s -> %s), notification %s exists",
                report_id,
                before.status.value,
                after.status.value,
                recorded.notification_id,
            )
            return TransitionOutcome(
                notification_id=recorded.notification_id,
                duplicate=True,
                fanout=FanoutResult(),
            )

        fanout = await self._push(event, recorded.notification_id)
        return TransitionOutcome(
            notification_id=recorded.notification_id,
            duplicate=False,
            fanout=fanout,
        )

    async def _push(self, event: TransitionEvent, notification_id: int) -> FanoutResult:
        owner_id = event.report.owner_id
        draft = self._recorder.draft(event)
        message = PushMessage(
            title=draft.title,
            body=draft.body,
            metadata={
                "reportId": event.report_id,
                "status": event.new_status.value,
                "notificationId": str(notification_id),
            },
        )

        # Push is best effort once the notification exists.
        try:
            tokens = self._registry.list_tokens(owner_id)
        except StoreFailure:
            LOGGER.exception("Could not load device tokens for %s; skipping push", owner_id)
            return FanoutResult()

        result = await self._fanout.dispatch(tokens, message)
        LOGGER.info(
            "Push fan-out for report %s: %s/%s delivered, %s failed",
            event.report_id,
            result.success_count,
            result.attempts,
            len(result.failures),
        )

        if self._config.prune_invalid_tokens:
            self._prune(owner_id, result)
        return result

    def _prune(self, owner_id: str, result: FanoutResult) -> None:
        for token, kind in result.failures:
            if kind != DeliveryErrorKind.INVALID_TOKEN:
                continue
            try:
                self._registry.remove(owner_id, token)
            except StoreFailure:
                LOGGER.exception("Could not prune invalid token for %s", owner_id)
