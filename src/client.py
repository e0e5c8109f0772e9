"""Push provider factory for houmetna.

The provider owns a long-lived HTTP client, so the app creates it once and
closes it on shutdown.
"""

from __future__ import annotations

import logging
import os

import httpx
from dotenv import load_dotenv
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from adapters.fcm_push import FCM_SCOPES, FCMPushProvider
from adapters.log_push import LoggingPushProvider


def build_push_provider(method: str, timeout_seconds: float):
    """Create the push provider selected by configuration.

    The service-account path is read via python-dotenv to keep secrets out of
    the repo; google-auth refreshes the short-lived access token from it.
    """

    if method == "log":
        return LoggingPushProvider()
    if method != "fcm":
        raise RuntimeError("push.method must be 'fcm' or 'log'")

    load_dotenv()

    key_path = os.getenv("FCM_SERVICE_ACCOUNT_FILE") or os.getenv("GOOGLE_APPLICATION_CREDENTIALS")

    # Fail fast on missing credentials rather than on the first push.
    if not key_path:
        raise RuntimeError("Missing FCM_SERVICE_ACCOUNT_FILE in environment")

    credentials = service_account.Credentials.from_service_account_file(key_path, scopes=FCM_SCOPES)
    project_id = os.getenv("FCM_PROJECT_ID") or credentials.project_id
    if not project_id:
        raise RuntimeError("Missing FCM_PROJECT_ID and no project_id in the service account file")

    logging.getLogger(__name__).info("Initializing FCM client for project %s", project_id)

    client = httpx.AsyncClient(timeout=timeout_seconds)
    return FCMPushProvider(client, project_id=project_id, credentials=credentials, auth_request=Request())
