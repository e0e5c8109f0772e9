"""Application entry point for the houmetna status notifier."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.sqlite_storage import SQLiteStorage
from client import build_push_provider
from core.change_stream import ChangeStreamConsumer
from core.config import ChangeStreamConfig, FanoutConfig, NotificationConfig
from core.detector import StatusTransitionDetector
from core.errors import HoumetnaError
from core.fanout import PushFanoutEngine
from core.models import Role
from core.recorder import NotificationRecorder
from core.registry import DeviceTokenRegistry
from core.service import DeviceTokenService, ReportService

NAME = "HOUMETNA"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/houmetna.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _open_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting houmetna status notifier")

    storage = _open_storage()

    # Select the push adapter based on configuration to keep the core
    # independent from delivery details.
    provider = build_push_provider(settings.PUSH_METHOD, settings.PUSH_SEND_TIMEOUT)
    logger.info("Selected push method - %s", settings.PUSH_METHOD)

    fanout_config = FanoutConfig(
        send_timeout_seconds=settings.PUSH_SEND_TIMEOUT,
        prune_invalid_tokens=settings.PUSH_PRUNE_INVALID_TOKENS,
    )
    detector = StatusTransitionDetector(
        recorder=NotificationRecorder(storage, NotificationConfig(snippet_chars=settings.SNIPPET_CHARS)),
        registry=DeviceTokenRegistry(storage),
        fanout=PushFanoutEngine(provider, fanout_config),
        config=fanout_config,
    )
    consumer = ChangeStreamConsumer(
        storage,
        detector,
        ChangeStreamConfig(
            poll_interval_seconds=settings.STREAM_POLL_INTERVAL,
            batch_size=settings.STREAM_BATCH_SIZE,
            retention_days=settings.STREAM_RETENTION_DAYS,
            alert_after_attempts=settings.STREAM_ALERT_AFTER_ATTEMPTS,
        ),
    )
    consumer.prune_expired()

    async def _serve() -> None:
        try:
            await consumer.run_forever()
        finally:
            await provider.aclose()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("Stopped by user")


def _add_user(args: argparse.Namespace) -> None:
    storage = _open_storage()
    storage.upsert_user(args.user_id, Role(args.role), email=args.email, display_name=args.name)
    print(f"User {args.user_id} saved with role {args.role}")


def _report(args: argparse.Namespace) -> None:
    storage = _open_storage()
    service = ReportService(storage, categories=settings.REPORT_CATEGORIES)
    caller = service.resolve_caller(args.caller)

    if args.report_command == "create":
        report = service.create_report(
            caller,
            category=args.category,
            description=args.description,
            latitude=args.lat,
            longitude=args.lng,
            photos=args.photo or [],
        )
        print(report.report_id)
        return

    for report in service.list_reports(caller):
        print(f"{report.report_id} | {report.category} | {report.status.value} | {report.description}")


def _set_status(args: argparse.Namespace) -> None:
    storage = _open_storage()
    service = ReportService(storage, categories=settings.REPORT_CATEGORIES)
    mutation = service.update_report_status(service.resolve_caller(args.caller), args.report_id, args.status)
    before = mutation.before.status.value if mutation.before else "-"
    print(f"{args.report_id}: {before} -> {mutation.after.status.value}")


def _token(args: argparse.Namespace) -> None:
    storage = _open_storage()
    caller = ReportService(storage).resolve_caller(args.caller)
    service = DeviceTokenService(DeviceTokenRegistry(storage))

    if args.token_command == "add":
        service.register_device_token(caller, args.token)
    elif args.token_command == "remove":
        service.unregister_device_token(caller, args.token)
    else:
        for token in sorted(service.list_device_tokens(caller)):
            print(token)


def _notifications(args: argparse.Namespace) -> None:
    storage = _open_storage()
    for notification in storage.list_notifications(args.caller):
        marker = " " if notification.read else "*"
        print(f"{marker} {notification.created_at:%Y-%m-%d %H:%M} {notification.title}: {notification.body}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="houmetna")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the status notifier")

    user_parser = subparsers.add_parser("user", help="Manage users")
    user_sub = user_parser.add_subparsers(dest="user_command", required=True)
    user_add = user_sub.add_parser("add", help="Create or update a user")
    user_add.add_argument("user_id")
    user_add.add_argument("--role", choices=[role.value for role in Role], default=Role.USER.value)
    user_add.add_argument("--email")
    user_add.add_argument("--name")

    report_parser = subparsers.add_parser("report", help="File or list reports")
    report_sub = report_parser.add_subparsers(dest="report_command", required=True)
    report_create = report_sub.add_parser("create", help="File a new report")
    report_create.add_argument("--as", dest="caller", required=True)
    report_create.add_argument("--category", required=True)
    report_create.add_argument("--description", required=True)
    report_create.add_argument("--lat", type=float)
    report_create.add_argument("--lng", type=float)
    report_create.add_argument("--photo", action="append")
    report_list = report_sub.add_parser("list", help="List visible reports")
    report_list.add_argument("--as", dest="caller", required=True)

    status_parser = subparsers.add_parser("status", help="Change a report status (admin)")
    status_parser.add_argument("report_id")
    status_parser.add_argument("status")
    status_parser.add_argument("--as", dest="caller", required=True)

    token_parser = subparsers.add_parser("token", help="Manage device tokens")
    token_sub = token_parser.add_subparsers(dest="token_command", required=True)
    for name in ("add", "remove"):
        token_cmd = token_sub.add_parser(name)
        token_cmd.add_argument("token")
        token_cmd.add_argument("--as", dest="caller", required=True)
    token_list = token_sub.add_parser("list")
    token_list.add_argument("--as", dest="caller", required=True)

    notif_parser = subparsers.add_parser("notifications", help="Show a user's notifications")
    notif_parser.add_argument("--as", dest="caller", required=True)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    handlers = {
        "user": _add_user,
        "report": _report,
        "status": _set_status,
        "token": _token,
        "notifications": _notifications,
    }
    handler = handlers.get(args.command)
    if handler is None:
        _run()
        return
    try:
        handler(args)
    except HoumetnaError as exc:
        print(f"error[{exc.code}]: {exc.message}", file=sys.stderr)
        raise SystemExit(1) from None


if __name__ == "__main__":
    main()
