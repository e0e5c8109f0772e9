"""Static configuration for houmetna.

All user-editable settings (database, categories, push, change stream,
logging) live in a single JSON file for quick edits without touching Python.
Secrets stay in the environment.
"""

import json
import os

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

CONFIG_PATH = os.environ.get("HOUMETNA_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database.
_database = _CONFIG.get("database", {})
DB_PATH = _resolve_path(_database.get("path", "houmetna.db"))

# Category tags accepted when a report is filed.
REPORT_CATEGORIES = tuple(_CONFIG.get("report_categories", ["voirie", "eclairage", "dechets", "autre"]))

# Notification body embeds this many characters of the report description.
_notifications = _CONFIG.get("notifications", {})
SNIPPET_CHARS = int(_notifications.get("snippet_chars", 60))

# Push delivery.
# - PUSH_METHOD: "fcm" for real delivery, "log" for a dry run
# - PUSH_SEND_TIMEOUT: per-token bound; the whole fan-out shares it
# - PUSH_PRUNE_INVALID_TOKENS: drop tokens FCM reports as unregistered
_push = _CONFIG.get("push", {})
PUSH_METHOD = _push.get("method", "log")
PUSH_SEND_TIMEOUT = float(_push.get("send_timeout_seconds", 10))
PUSH_PRUNE_INVALID_TOKENS = bool(_push.get("prune_invalid_tokens", False))

# Change-stream polling for the status notifier.
_stream = _CONFIG.get("change_stream", {})
STREAM_POLL_INTERVAL = float(_stream.get("poll_interval_seconds", 2))
STREAM_BATCH_SIZE = int(_stream.get("batch_size", 50))
STREAM_RETENTION_DAYS = int(_stream.get("retention_days", 30))
STREAM_ALERT_AFTER_ATTEMPTS = int(_stream.get("alert_after_attempts", 5))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
