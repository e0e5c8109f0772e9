"""Push fan-out engine (core domain).

Sends one message to many device tokens concurrently. Each send is isolated:
a failure or timeout on one token becomes a per-token outcome and never
cancels the others.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional

from core.config import FanoutConfig
from core.errors import DeliveryFailure, InvalidArgument
from core.models import DeliveryErrorKind, FanoutResult, PushMessage
from core.ports import PushProvider
from core.registry import token_prefix

LOGGER = logging.getLogger(__name__)


def _validate(tokens: Iterable[str], message: PushMessage) -> list[str]:
    if not isinstance(message, PushMessage):
        raise InvalidArgument("message must be a PushMessage")
    if not message.title or not message.body:
        raise InvalidArgument("message title and body are required")
    if any(not isinstance(value, str) for value in message.metadata.values()):
        raise InvalidArgument("message metadata values must be strings")
    if tokens is None or isinstance(tokens, str):
        raise InvalidArgument("tokens must be a collection of strings")
    try:
        items = list(tokens)
    except TypeError as exc:
        raise InvalidArgument("tokens must be a collection of strings") from exc

    # Check types before hashing or sorting, which fail on mixed input.
    if any(not isinstance(token, str) or not token for token in items):
        raise InvalidArgument("tokens must be non-empty strings")
    return sorted(set(items))


class PushFanoutEngine:
    """Dispatches a message to a set of tokens through a push provider."""

    def __init__(self, provider: PushProvider, config: FanoutConfig) -> None:
        self._provider = provider
        self._config = config

    async def dispatch(self, tokens: Iterable[str], message: PushMessage) -> FanoutResult:
        """Send ``message`` to every token and aggregate the outcomes.

        Only a structurally invalid call raises; delivery problems are
        reported through ``FanoutResult.failures`` in token order.
        """

        ordered = _validate(tokens, message)
        if not ordered:
            return FanoutResult()

        outcomes = await asyncio.gather(*(self._send_one(token, message) for token in ordered))

        failures = tuple(
            (token, kind) for token, kind in zip(ordered, outcomes) if kind is not None
        )
        return FanoutResult(success_count=len(ordered) - len(failures), failures=failures)

    async def _send_one(self, token: str, message: PushMessage) -> Optional[DeliveryErrorKind]:
        try:
            await asyncio.wait_for(
                self._provider.send(token, message),
                timeout=self._config.send_timeout_seconds,
            )
        except asyncio.TimeoutError:
            kind = DeliveryErrorKind.TRANSIENT
            detail = f"timed out after {self._config.send_timeout_seconds}s"
        except DeliveryFailure as exc:
            kind = exc.kind
            detail = exc.message
        except Exception as exc:
            # Provider bugs are still contained to the one token.
            LOGGER.exception("Push provider raised for token %s", token_prefix(token))
            kind = DeliveryErrorKind.UNKNOWN
            detail = str(exc)
        else:
            return None

        LOGGER.warning(
            "Push to %s failed (%s): %s", token_prefix(token), kind.value, detail
        )
        return kind
