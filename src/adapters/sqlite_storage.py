"""SQLite storage adapter.

Implements the core store ports and the report change feed using a single
SQLite database.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional, Sequence

from core.errors import StoreFailure
from core.models import (
    Notification,
    NotificationDraft,
    RecordedNotification,
    Report,
    ReportMutation,
    ReportStatus,
    Role,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _row_to_report(row: sqlite3.Row) -> Report:
    return Report(
        report_id=row["report_id"],
        owner_id=row["owner_id"],
        category=row["category"],
        description=row["description"],
        status=ReportStatus(row["status"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        latitude=row["latitude"],
        longitude=row["longitude"],
        photos=tuple(json.loads(row["photos"] or "[]")),
    )


def _row_to_mutation(row: sqlite3.Row) -> ReportMutation:
    before = json.loads(row["before_json"]) if row["before_json"] else None
    return ReportMutation(
        mutation_id=int(row["mutation_id"]),
        report_id=row["report_id"],
        before=Report.from_dict(before) if before else None,
        after=Report.from_dict(json.loads(row["after_json"])),
        mutated_at=datetime.fromisoformat(row["mutated_at"]),
    )


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the core store contracts."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside one transaction; errors become StoreFailure."""

        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StoreFailure(f"Cannot open database {self._db_path}: {exc}") from exc
        try:
            with conn:
                if immediate:
                    # Take the write lock up front so read-then-write stays atomic.
                    conn.execute("BEGIN IMMEDIATE")
                yield conn
        except sqlite3.Error as exc:
            raise StoreFailure(f"SQLite error: {exc}") from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - users: role lookup for caller gating
        - device_tokens: per-user token set, one row per (user, token)
        - reports: current state of every report
        - report_mutations: append-only change stream of report writes
        - stream_state: per-consumer cursor into report_mutations
        - notifications: one row per status transition, keyed for dedup
        """

        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    role TEXT NOT NULL DEFAULT 'user',
                    email TEXT,
                    display_name TEXT
                )
                """
            )
            # The composite primary key is what makes add/remove behave as
            # set-union/set-difference under concurrent writers.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS device_tokens (
                    user_id TEXT NOT NULL,
                    token TEXT NOT NULL,
                    added_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (user_id, token)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reports (
                    report_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    category TEXT NOT NULL,
                    description TEXT NOT NULL,
                    latitude REAL,
                    longitude REAL,
                    photos TEXT NOT NULL DEFAULT '[]',
                    status TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
                """
            )
            # Fields:
            # - before_json: report snapshot before the write (NULL on create)
            # - after_json: report snapshot after the write
            # - mutated_at: server time of the write, part of the dedup key
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS report_mutations (
                    mutation_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    report_id TEXT NOT NULL,
                    before_json TEXT,
                    after_json TEXT NOT NULL,
                    mutated_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS stream_state (
                    consumer TEXT PRIMARY KEY,
                    last_mutation_id INTEGER NOT NULL
                )
                """
            )
            # notification_id is assigned by the database and increases
            # monotonically; created_at uses the database clock.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS notifications (
                    notification_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    transition_key TEXT NOT NULL UNIQUE,
                    user_id TEXT NOT NULL,
                    report_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    body TEXT NOT NULL,
                    read INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP NOT NULL
                        DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now'))
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_reports_owner ON reports (owner_id, created_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications (user_id, notification_id)"
            )

    # -- users -------------------------------------------------------------

    def upsert_user(
        self,
        user_id: str,
        role: Role = Role.USER,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> None:
        """Create or update a user record, keeping fields that are not given."""

        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO users (user_id, role, email, display_name)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    role = excluded.role,
                    email = COALESCE(excluded.email, users.email),
                    display_name = COALESCE(excluded.display_name, users.display_name)
                """,
                (user_id, role.value, email, display_name),
            )

    def get_user_role(self, user_id: str) -> Optional[Role]:
        with self._transaction() as conn:
            row = conn.execute("SELECT role FROM users WHERE user_id = ?", (user_id,)).fetchone()
        if not row:
            return None
        try:
            return Role(row["role"])
        except ValueError:
            return Role.USER

    # -- device tokens -----------------------------------------------------

    def add_device_token(self, user_id: str, token: str) -> None:
        """Insert the token unless the user already has it."""

        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO device_tokens (user_id, token, added_at)
                VALUES (?, ?, ?)
                """,
                (user_id, token, _now().isoformat()),
            )

    def remove_device_token(self, user_id: str, token: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM device_tokens WHERE user_id = ? AND token = ?",
                (user_id, token),
            )

    def list_device_tokens(self, user_id: str) -> set[str]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT token FROM device_tokens WHERE user_id = ?",
                (user_id,),
            ).fetchall()
        return {row["token"] for row in rows}

    # -- reports -----------------------------------------------------------

    def _append_mutation(
        self,
        conn: sqlite3.Connection,
        before: Optional[Report],
        after: Report,
    ) -> ReportMutation:
        cur = conn.execute(
            """
            INSERT INTO report_mutations (report_id, before_json, after_json, mutated_at)
            VALUES (?, ?, ?, ?)
            """,
            (
                after.report_id,
                json.dumps(before.to_dict()) if before else None,
                json.dumps(after.to_dict()),
                after.updated_at.isoformat(),
            ),
        )
        return ReportMutation(
            mutation_id=int(cur.lastrowid),
            report_id=after.report_id,
            before=before,
            after=after,
            mutated_at=after.updated_at,
        )

    def create_report(
        self,
        owner_id: str,
        category: str,
        description: str,
        latitude: Optional[float],
        longitude: Optional[float],
        photos: Sequence[str],
    ) -> Report:
        """Insert a new report in status ``new`` and log the creation."""

        now = _now()
        report = Report(
            report_id=uuid.uuid4().hex,
            owner_id=owner_id,
            category=category,
            description=description,
            status=ReportStatus.NEW,
            created_at=now,
            updated_at=now,
            latitude=latitude,
            longitude=longitude,
            photos=tuple(photos),
        )
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO reports (
                    report_id,
                    owner_id,
                    category,
                    description,
                    latitude,
                    longitude,
                    photos,
                    status,
                    created_at,
                    updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    report.report_id,
                    report.owner_id,
                    report.category,
                    report.description,
                    report.latitude,
                    report.longitude,
                    json.dumps(list(report.photos)),
                    report.status.value,
                    report.created_at.isoformat(),
                    report.updated_at.isoformat(),
                ),
            )
            self._append_mutation(conn, None, report)
        return report

    def get_report(self, report_id: str) -> Optional[Report]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM reports WHERE report_id = ?",
                (report_id,),
            ).fetchone()
        return _row_to_report(row) if row else None

    def list_reports(self, owner_id: Optional[str] = None) -> list[Report]:
        """Return reports newest first, optionally for a single owner."""

        with self._transaction() as conn:
            if owner_id is None:
                rows = conn.execute("SELECT * FROM reports ORDER BY created_at DESC").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM reports WHERE owner_id = ? ORDER BY created_at DESC",
                    (owner_id,),
                ).fetchall()
        return [_row_to_report(row) for row in rows]

    def update_report_status(self, report_id: str, status: ReportStatus) -> Optional[ReportMutation]:
        """Set the status and append the write to the change stream.

        Returns None when the report does not exist.
        """

        with self._transaction(immediate=True) as conn:
            row = conn.execute(
                "SELECT * FROM reports WHERE report_id = ?",
                (report_id,),
            ).fetchone()
            if not row:
                return None
            before = _row_to_report(row)
            after = replace(before, status=status, updated_at=_now())
            conn.execute(
                "UPDATE reports SET status = ?, updated_at = ? WHERE report_id = ?",
                (after.status.value, after.updated_at.isoformat(), report_id),
            )
            return self._append_mutation(conn, before, after)

    # -- notifications -----------------------------------------------------

    def create_notification_if_absent(self, draft: NotificationDraft) -> RecordedNotification:
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO notifications (
                    transition_key,
                    user_id,
                    report_id,
                    title,
                    body
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    draft.transition_key,
                    draft.recipient_id,
                    draft.report_id,
                    draft.title,
                    draft.body,
                ),
            )
            created = cur.rowcount == 1
            row = conn.execute(
                "SELECT notification_id FROM notifications WHERE transition_key = ?",
                (draft.transition_key,),
            ).fetchone()
        return RecordedNotification(notification_id=int(row["notification_id"]), created=created)

    def list_notifications(self, user_id: str) -> list[Notification]:
        """Return a user's notifications, newest first."""

        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM notifications WHERE user_id = ? ORDER BY notification_id DESC",
                (user_id,),
            ).fetchall()
        return [
            Notification(
                notification_id=int(row["notification_id"]),
                recipient_id=row["user_id"],
                report_id=row["report_id"],
                title=row["title"],
                body=row["body"],
                read=bool(row["read"]),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    # -- change feed -------------------------------------------------------

    def list_mutations_after(self, mutation_id: int, limit: int) -> list[ReportMutation]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM report_mutations
                WHERE mutation_id > ?
                ORDER BY mutation_id
                LIMIT ?
                """,
                (mutation_id, limit),
            ).fetchall()
        return [_row_to_mutation(row) for row in rows]

    def get_stream_cursor(self, consumer: str) -> Optional[int]:
        """Return the last delivered mutation id for a consumer, if any."""

        with self._transaction() as conn:
            row = conn.execute(
                "SELECT last_mutation_id FROM stream_state WHERE consumer = ?",
                (consumer,),
            ).fetchone()
        return int(row["last_mutation_id"]) if row else None

    def set_stream_cursor(self, consumer: str, mutation_id: int) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO stream_state (consumer, last_mutation_id)
                VALUES (?, ?)
                ON CONFLICT(consumer) DO UPDATE SET last_mutation_id = excluded.last_mutation_id
                """,
                (consumer, mutation_id),
            )

    def prune_mutations(self, ttl_days: int) -> int:
        """Delete delivered mutations older than the horizon; return the count.

        Only mutations every consumer has moved past are removed.
        """

        cutoff = _now() - timedelta(days=ttl_days)
        with self._transaction() as conn:
            cur = conn.execute(
                """
                DELETE FROM report_mutations
                WHERE mutated_at < ?
                  AND mutation_id <= (SELECT COALESCE(MIN(last_mutation_id), 0) FROM stream_state)
                """,
                (cutoff.isoformat(),),
            )
            return cur.rowcount
