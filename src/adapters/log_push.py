"""Dry-run push adapter.

Logs every push instead of delivering it; handy for local runs without FCM
credentials.
"""

from __future__ import annotations

import logging

from core.models import PushMessage
from core.registry import token_prefix

LOGGER = logging.getLogger(__name__)


class LoggingPushProvider:
    """Push provider that records sends in the log and always succeeds."""

    async def send(self, token: str, message: PushMessage) -> None:
        LOGGER.info("[dry-run] push to %s: %s | %s", token_prefix(token), message.title, message.body)

    async def aclose(self) -> None:
        return None
