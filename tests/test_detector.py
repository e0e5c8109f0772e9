from __future__ import annotations

import asyncio

import pytest

from core.config import FanoutConfig, NotificationConfig
from core.detector import StatusTransitionDetector
from core.errors import StoreFailure
from core.fanout import PushFanoutEngine
from core.models import DeliveryErrorKind, ReportStatus
from core.recorder import NotificationRecorder
from core.registry import DeviceTokenRegistry
from fakes import FakeStore, ScriptedPushProvider, invalid_token, make_report


def _detector(store: FakeStore, provider, *, timeout: float = 1.0, prune: bool = False):
    config = FanoutConfig(send_timeout_seconds=timeout, prune_invalid_tokens=prune)
    return StatusTransitionDetector(
        recorder=NotificationRecorder(store, NotificationConfig()),
        registry=DeviceTokenRegistry(store),
        fanout=PushFanoutEngine(provider, config),
        config=config,
    )


def _transition(before_status=ReportStatus.NEW, after_status=ReportStatus.IN_PROGRESS):
    before = make_report(status=before_status)
    after = make_report(status=after_status, minutes=5)
    return before, after


def test_same_status_is_a_no_op() -> None:
    store = FakeStore()
    store.add_device_token("citizen", "tok-1")
    provider = ScriptedPushProvider()
    before = make_report(status=ReportStatus.NEW)
    after = make_report(status=ReportStatus.NEW, minutes=5)

    outcome = asyncio.run(_detector(store, provider).on_report_mutated("r1", before, after, after.updated_at))

    assert outcome is None
    assert store.notifications == {}
    assert provider.attempted == []


def test_creation_is_a_no_op() -> None:
    store = FakeStore()
    provider = ScriptedPushProvider()
    after = make_report()

    outcome = asyncio.run(_detector(store, provider).on_report_mutated("r1", None, after, after.updated_at))

    assert outcome is None
    assert store.notifications == {}


def test_transition_records_notification_and_pushes_to_all_tokens() -> None:
    store = FakeStore()
    store.add_device_token("citizen", "tok-1")
    store.add_device_token("citizen", "tok-2")
    provider = ScriptedPushProvider()
    before, after = _transition()

    outcome = asyncio.run(_detector(store, provider).on_report_mutated("r1", before, after, after.updated_at))

    assert outcome is not None
    assert not outcome.duplicate
    assert outcome.fanout.success_count == 2
    (notification_id, draft), = store.notifications.values()
    assert outcome.notification_id == notification_id
    assert draft.recipient_id == "citizen"
    assert "in_progress" in draft.body
    assert sorted(provider.attempted) == ["tok-1", "tok-2"]
    _, message = provider.delivered[0]
    assert message.metadata == {
        "reportId": "r1",
        "status": "in_progress",
        "notificationId": str(notification_id),
    }


def test_owner_without_tokens_still_gets_notification() -> None:
    store = FakeStore()
    provider = ScriptedPushProvider()
    before, after = _transition()

    outcome = asyncio.run(_detector(store, provider).on_report_mutated("r1", before, after, after.updated_at))

    assert len(store.notifications) == 1
    assert outcome.fanout.success_count == 0
    assert outcome.fanout.failures == ()
    assert provider.attempted == []


def test_timed_out_device_does_not_fail_the_transition() -> None:
    store = FakeStore()
    store.add_device_token("citizen", "token1")
    store.add_device_token("citizen", "token2")
    provider = ScriptedPushProvider({"token2": "hang"})
    before, after = _transition()

    outcome = asyncio.run(
        _detector(store, provider, timeout=0.05).on_report_mutated("r1", before, after, after.updated_at)
    )

    assert outcome.fanout.success_count == 1
    assert outcome.fanout.failures == (("token2", DeliveryErrorKind.TRANSIENT),)
    assert len(store.notifications) == 1


def test_redelivery_creates_one_notification_and_one_push() -> None:
    store = FakeStore()
    store.add_device_token("citizen", "tok-1")
    provider = ScriptedPushProvider()
    detector = _detector(store, provider)
    before, after = _transition()

    first = asyncio.run(detector.on_report_mutated("r1", before, after, after.updated_at))
    second = asyncio.run(detector.on_report_mutated("r1", before, after, after.updated_at))

    assert len(store.notifications) == 1
    assert second.duplicate
    assert second.notification_id == first.notification_id
    assert provider.attempted == ["tok-1"]


def test_later_transition_between_same_statuses_is_new() -> None:
    store = FakeStore()
    provider = ScriptedPushProvider()
    detector = _detector(store, provider)
    before = make_report(status=ReportStatus.NEW)
    after = make_report(status=ReportStatus.IN_PROGRESS, minutes=5)
    reopened_before = make_report(status=ReportStatus.NEW, minutes=10)
    reopened_after = make_report(status=ReportStatus.IN_PROGRESS, minutes=15)

    asyncio.run(detector.on_report_mutated("r1", before, after, after.updated_at))
    asyncio.run(detector.on_report_mutated("r1", reopened_before, reopened_after, reopened_after.updated_at))

    assert len(store.notifications) == 2


def test_store_failure_is_fatal_and_skips_push() -> None:
    store = FakeStore()
    store.fail_notifications = True
    store.add_device_token("citizen", "tok-1")
    provider = ScriptedPushProvider()
    before, after = _transition()

    with pytest.raises(StoreFailure):
        asyncio.run(_detector(store, provider).on_report_mutated("r1", before, after, after.updated_at))

    assert provider.attempted == []


def test_token_lookup_failure_keeps_the_notification() -> None:
    store = FakeStore()
    store.fail_tokens = True
    provider = ScriptedPushProvider()
    before, after = _transition()

    outcome = asyncio.run(_detector(store, provider).on_report_mutated("r1", before, after, after.updated_at))

    assert len(store.notifications) == 1
    assert outcome.fanout.attempts == 0


def test_invalid_tokens_are_kept_by_default() -> None:
    store = FakeStore()
    store.add_device_token("citizen", "tok-dead")
    provider = ScriptedPushProvider({"tok-dead": invalid_token("tok-dead")})
    before, after = _transition()

    asyncio.run(_detector(store, provider).on_report_mutated("r1", before, after, after.updated_at))

    assert store.tokens["citizen"] == {"tok-dead"}


def test_invalid_tokens_are_pruned_when_enabled() -> None:
    store = FakeStore()
    store.add_device_token("citizen", "tok-dead")
    store.add_device_token("citizen", "tok-live")
    provider = ScriptedPushProvider({"tok-dead": invalid_token("tok-dead")})
    before, after = _transition()

    asyncio.run(_detector(store, provider, prune=True).on_report_mutated("r1", before, after, after.updated_at))

    assert store.tokens["citizen"] == {"tok-live"}
