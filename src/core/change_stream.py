"""Report change-stream consumer.

Delivers stored report mutations to the status transition detector with
at-least-once semantics: the consumer cursor only moves past a mutation once
its handling completed, so anything that failed (or was interrupted) is
delivered again on the next poll. The detector's idempotency guard absorbs
the repeats.
"""

from __future__ import annotations

import asyncio
import logging

from core.config import ChangeStreamConfig
from core.detector import StatusTransitionDetector
from core.models import ReportMutation
from core.ports import ChangeFeed

LOGGER = logging.getLogger(__name__)

DEFAULT_CONSUMER = "status-notifier"


class ChangeStreamConsumer:
    """Polls a change feed and invokes the detector for every mutation."""

    def __init__(
        self,
        feed: ChangeFeed,
        detector: StatusTransitionDetector,
        config: ChangeStreamConfig,
        name: str = DEFAULT_CONSUMER,
    ) -> None:
        self._feed = feed
        self._detector = detector
        self._config = config
        self._name = name
        # mutation_id -> consecutive failed deliveries
        self._attempts: dict[int, int] = {}

    async def _deliver(self, mutation: ReportMutation) -> None:
        await self._detector.on_report_mutated(
            mutation.report_id,
            mutation.before,
            mutation.after,
            mutation.mutated_at,
        )

    def failed_attempts(self, mutation_id: int) -> int:
        return self._attempts.get(mutation_id, 0)

    def _record_failure(self, mutation: ReportMutation, error: BaseException) -> None:
        attempts = self._attempts.get(mutation.mutation_id, 0) + 1
        self._attempts[mutation.mutation_id] = attempts
        level = logging.CRITICAL if attempts >= self._config.alert_after_attempts else logging.ERROR
        LOGGER.log(
            level,
            "Handling mutation %s for report %s failed (attempt %s); it will be redelivered",
            mutation.mutation_id,
            mutation.report_id,
            attempts,
            exc_info=error,
        )

    async def poll_once(self) -> int:
        """Deliver one batch and return how many mutations were committed."""

        last_id = self._feed.get_stream_cursor(self._name) or 0
        batch = self._feed.list_mutations_after(last_id, self._config.batch_size)
        if not batch:
            return 0

        # Mutations are independent units of work; handle them concurrently.
        results = await asyncio.gather(
            *(self._deliver(mutation) for mutation in batch),
            return_exceptions=True,
        )

        committed = 0
        cursor = last_id
        for mutation, result in zip(batch, results):
            if isinstance(result, BaseException):
                self._record_failure(mutation, result)
                break
            self._attempts.pop(mutation.mutation_id, None)
            cursor = mutation.mutation_id
            committed += 1

        # Advance only over the contiguous prefix that succeeded.
        if cursor > last_id:
            self._feed.set_stream_cursor(self._name, cursor)
        return committed

    def prune_expired(self) -> int:
        """Drop delivered mutations older than the retention window."""

        removed = self._feed.prune_mutations(self._config.retention_days)
        LOGGER.info(
            "Change stream cleanup removed %s mutations older than %s days",
            removed,
            self._config.retention_days,
        )
        return removed

    async def run_forever(self) -> None:
        LOGGER.info("Change stream consumer %s started", self._name)
        while True:
            try:
                await self.poll_once()
            except Exception:
                LOGGER.exception("Error while polling the change stream")
            await asyncio.sleep(self._config.poll_interval_seconds)
