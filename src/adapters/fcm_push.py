"""Firebase Cloud Messaging push adapter.

Implements the core PushProvider port on top of the FCM HTTP v1 API. Access
tokens come from google-auth service-account credentials and are refreshed
whenever they expire or FCM rejects them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx
from google.auth.exceptions import GoogleAuthError

from core.errors import DeliveryFailure
from core.models import DeliveryErrorKind, PushMessage
from core.registry import token_prefix

LOGGER = logging.getLogger(__name__)

FCM_ENDPOINT = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"
FCM_SCOPES = ["https://www.googleapis.com/auth/firebase.messaging"]

# FCM error codes that mean the token itself will never work again.
_INVALID_TOKEN_CODES = {"UNREGISTERED", "SENDER_ID_MISMATCH"}
_TRANSIENT_CODES = {"UNAVAILABLE", "INTERNAL", "QUOTA_EXCEEDED"}
_TOKEN_FIELD = "message.token"


def build_payload(token: str, message: PushMessage) -> dict:
    """Return the FCM v1 request body for one token."""

    return {
        "message": {
            "token": token,
            "notification": {"title": message.title, "body": message.body},
            "data": dict(message.metadata),
            "android": {"priority": "high"},
        }
    }


def _error_body(response: httpx.Response) -> dict:
    try:
        error = response.json().get("error", {})
    except (ValueError, AttributeError):
        return {}
    return error if isinstance(error, dict) else {}


def _error_code(error: dict) -> Optional[str]:
    for detail in error.get("details") or []:
        if isinstance(detail, dict) and detail.get("errorCode"):
            return str(detail["errorCode"])
    status = error.get("status")
    return str(status) if status else None


def _names_token_field(error: dict) -> bool:
    """True when an INVALID_ARGUMENT points at the registration token."""

    for detail in error.get("details") or []:
        if not isinstance(detail, dict):
            continue
        for violation in detail.get("fieldViolations") or []:
            if isinstance(violation, dict) and violation.get("field") == _TOKEN_FIELD:
                return True
    return False


def classify_response(response: httpx.Response) -> DeliveryErrorKind:
    """Map a failed FCM response to a delivery error kind.

    A bare INVALID_ARGUMENT usually means a malformed message, so it only
    counts against the token when FCM names the token field.
    """

    error = _error_body(response)
    code = _error_code(error)
    if response.status_code == 404 or code in _INVALID_TOKEN_CODES:
        return DeliveryErrorKind.INVALID_TOKEN
    if code == "INVALID_ARGUMENT" and _names_token_field(error):
        return DeliveryErrorKind.INVALID_TOKEN
    if response.status_code == 429 or response.status_code >= 500 or code in _TRANSIENT_CODES:
        return DeliveryErrorKind.TRANSIENT
    return DeliveryErrorKind.UNKNOWN


class FCMPushProvider:
    """Push provider that sends one FCM message per device token.

    ``credentials`` is a google-auth credentials object (``token``, ``valid``,
    ``refresh(request)``); ``auth_request`` is the transport handed to
    ``refresh``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        project_id: str,
        credentials: Any,
        auth_request: Any = None,
    ) -> None:
        self._client = client
        self._project_id = project_id
        self._credentials = credentials
        self._auth_request = auth_request
        self._auth_lock: Optional[asyncio.Lock] = None

    def _endpoint(self) -> str:
        return FCM_ENDPOINT.format(project_id=self._project_id)

    async def _authorization(self, force_refresh: bool = False) -> str:
        if self._auth_lock is None:
            self._auth_lock = asyncio.Lock()
        # One refresh at a time; concurrent sends reuse the fresh token.
        async with self._auth_lock:
            if force_refresh or not self._credentials.valid:
                try:
                    await asyncio.to_thread(self._credentials.refresh, self._auth_request)
                except GoogleAuthError as e:
                    raise DeliveryFailure(
                        f"FCM credential refresh failed: {e}",
                        kind=DeliveryErrorKind.TRANSIENT,
                    ) from e
                LOGGER.info("Refreshed FCM access token")
        return f"Bearer {self._credentials.token}"

    async def _post(self, token: str, message: PushMessage, force_refresh: bool = False) -> httpx.Response:
        authorization = await self._authorization(force_refresh)
        return await self._client.post(
            self._endpoint(),
            json=build_payload(token, message),
            headers={"Authorization": authorization},
        )

    async def send(self, token: str, message: PushMessage) -> None:
        """Send ``message`` to ``token``; raise DeliveryFailure on any failure."""

        try:
            response = await self._post(token, message)
            if response.status_code == 401:
                # Token revoked or expired early; refresh once and retry.
                LOGGER.info("FCM rejected the access token; refreshing")
                response = await self._post(token, message, force_refresh=True)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            kind = classify_response(e.response)
            raise DeliveryFailure(
                f"FCM error {e.response.status_code}: {e.response.text[:200]}",
                kind=kind,
            ) from e
        except httpx.RequestError as e:
            raise DeliveryFailure(f"FCM request failed: {e}", kind=DeliveryErrorKind.TRANSIENT) from e

        LOGGER.debug("FCM accepted message for %s", token_prefix(token))

    async def aclose(self) -> None:
        await self._client.aclose()
