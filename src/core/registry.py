"""Device token registry (core domain)."""

from __future__ import annotations

import logging

from core.errors import InvalidArgument
from core.ports import DeviceTokenStore

LOGGER = logging.getLogger(__name__)


def token_prefix(token: str) -> str:
    """Short, log-safe form of a device token."""

    return f"{token[:8]}..." if len(token) > 8 else token


def _require(value: str, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(f"{name} is required")
    return value.strip()


class DeviceTokenRegistry:
    """Maintains each user's deduplicated set of push endpoints.

    Mutations go through the store's merge primitives, so concurrent add and
    remove calls for the same user converge without an in-process lock.
    """

    def __init__(self, store: DeviceTokenStore) -> None:
        self._store = store

    def add(self, user_id: str, token: str) -> None:
        user_id = _require(user_id, "user_id")
        token = _require(token, "token")
        self._store.add_device_token(user_id, token)
        LOGGER.debug("Device token %s registered for %s", token_prefix(token), user_id)

    def remove(self, user_id: str, token: str) -> None:
        user_id = _require(user_id, "user_id")
        token = _require(token, "token")
        self._store.remove_device_token(user_id, token)
        LOGGER.debug("Device token %s removed for %s", token_prefix(token), user_id)

    def list_tokens(self, user_id: str) -> set[str]:
        """Return the user's tokens; unknown users simply have none."""

        if not isinstance(user_id, str) or not user_id.strip():
            return set()
        return set(self._store.list_device_tokens(user_id.strip()))
