"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any storage or push-provider specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class ReportStatus(str, Enum):
    """Lifecycle of a citizen report."""

    NEW = "new"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class DeliveryErrorKind(str, Enum):
    """Why a single push send failed; drives token cleanup decisions."""

    INVALID_TOKEN = "invalid_token"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Caller:
    """Identity of whoever invokes a caller-facing operation."""

    user_id: str
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass(frozen=True)
class Report:
    """Snapshot of a report record as stored."""

    report_id: str
    owner_id: str
    category: str
    description: str
    status: ReportStatus
    created_at: datetime
    updated_at: datetime
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    photos: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "report_id": self.report_id,
            "owner_id": self.owner_id,
            "category": self.category,
            "description": self.description,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "latitude": self.latitude,
            "longitude": self.longitude,
            "photos": list(self.photos),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Report":
        return cls(
            report_id=data["report_id"],
            owner_id=data["owner_id"],
            category=data["category"],
            description=data.get("description") or "",
            status=ReportStatus(data["status"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            photos=tuple(data.get("photos") or ()),
        )


@dataclass(frozen=True)
class ReportMutation:
    """One change-stream record: a report write with its before/after state.

    ``before`` is None when the write created the report.
    """

    mutation_id: int
    report_id: str
    before: Optional[Report]
    after: Report
    mutated_at: datetime


@dataclass(frozen=True)
class TransitionEvent:
    """A meaningful status change, alive for one trigger invocation only."""

    report_id: str
    previous_status: ReportStatus
    new_status: ReportStatus
    report: Report
    mutated_at: datetime


@dataclass(frozen=True)
class NotificationDraft:
    """Notification content before the store assigns identity and time."""

    transition_key: str
    recipient_id: str
    report_id: str
    title: str
    body: str


@dataclass(frozen=True)
class RecordedNotification:
    """Result of a create-if-absent notification write."""

    notification_id: int
    created: bool


@dataclass(frozen=True)
class Notification:
    """Persisted representation of a status-change notification."""

    notification_id: int
    recipient_id: str
    report_id: str
    title: str
    body: str
    read: bool
    created_at: datetime


@dataclass(frozen=True)
class PushMessage:
    title: str
    body: str
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class FanoutResult:
    """Aggregate outcome of one dispatch call."""

    success_count: int = 0
    failures: tuple[tuple[str, DeliveryErrorKind], ...] = ()

    @property
    def attempts(self) -> int:
        return self.success_count + len(self.failures)


@dataclass(frozen=True)
class TransitionOutcome:
    """What the detector did for one meaningful transition.

    ``duplicate`` is set when the notification already existed, in which
    case no push was attempted.
    """

    notification_id: int
    duplicate: bool
    fanout: FanoutResult
