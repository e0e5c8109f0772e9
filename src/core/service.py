"""Caller-facing operations.

These are the thin, role-gated entry points used by the outer layers (CLI or
request handlers). Every check runs before any store mutation so a rejected
call leaves no trace and fires no trigger.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from core.errors import InvalidArgument, NotFound, PermissionDenied, Unauthenticated
from core.models import Caller, Report, ReportMutation, ReportStatus
from core.ports import ReportStore
from core.registry import DeviceTokenRegistry

LOGGER = logging.getLogger(__name__)

DEFAULT_CATEGORIES = ("voirie", "eclairage", "dechets", "autre")


def _require_caller(caller: Optional[Caller]) -> Caller:
    if caller is None or not caller.user_id:
        raise Unauthenticated()
    return caller


def _parse_status(value) -> ReportStatus:
    if not value:
        raise InvalidArgument("status is required")
    try:
        return ReportStatus(value)
    except ValueError:
        allowed = ", ".join(status.value for status in ReportStatus)
        raise InvalidArgument(f"Unknown status {value!r}; expected one of: {allowed}") from None


def _validate_location(latitude: Optional[float], longitude: Optional[float]) -> None:
    if (latitude is None) != (longitude is None):
        raise InvalidArgument("latitude and longitude must be given together")
    if latitude is None:
        return
    if not -90.0 <= latitude <= 90.0:
        raise InvalidArgument(f"latitude out of range: {latitude}")
    if not -180.0 <= longitude <= 180.0:
        raise InvalidArgument(f"longitude out of range: {longitude}")


class ReportService:
    """Report operations exposed to the request/response layer."""

    def __init__(self, store: ReportStore, categories: Iterable[str] = DEFAULT_CATEGORIES) -> None:
        self._store = store
        self._categories = tuple(categories)

    def create_report(
        self,
        caller: Optional[Caller],
        category: str,
        description: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        photos: Sequence[str] = (),
    ) -> Report:
        caller = _require_caller(caller)
        if not category:
            raise InvalidArgument("category is required")
        if category not in self._categories:
            raise InvalidArgument(f"Unknown category {category!r}")
        if not description or not description.strip():
            raise InvalidArgument("description is required")
        _validate_location(latitude, longitude)

        report = self._store.create_report(
            owner_id=caller.user_id,
            category=category,
            description=description.strip(),
            latitude=latitude,
            longitude=longitude,
            photos=[photo for photo in photos if photo],
        )
        LOGGER.info("Report %s created by %s", report.report_id, caller.user_id)
        return report

    def list_reports(self, caller: Optional[Caller]) -> list[Report]:
        """Admins see every report; everyone else sees their own."""

        caller = _require_caller(caller)
        if caller.is_admin:
            return self._store.list_reports()
        return self._store.list_reports(owner_id=caller.user_id)

    def update_report_status(
        self,
        caller: Optional[Caller],
        report_id: str,
        new_status,
    ) -> ReportMutation:
        """Change a report's status. Admin only.

        The resulting store write is what the change stream later delivers to
        the status transition detector.
        """

        caller = _require_caller(caller)
        if not caller.is_admin:
            raise PermissionDenied("Only admins can update report status")
        if not report_id:
            raise InvalidArgument("report_id is required")
        status = _parse_status(new_status)

        mutation = self._store.update_report_status(report_id, status)
        if mutation is None:
            raise NotFound(f"Report {report_id} not found")
        LOGGER.info("Report %s status set to %s by %s", report_id, status.value, caller.user_id)
        return mutation

    def resolve_caller(self, user_id: Optional[str]) -> Optional[Caller]:
        """Build a Caller from a user id, reading the role from the user record."""

        if not user_id:
            return None
        role = self._store.get_user_role(user_id)
        return Caller(user_id=user_id, role=role) if role else Caller(user_id=user_id)


class DeviceTokenService:
    """Token registration on behalf of the signed-in user."""

    def __init__(self, registry: DeviceTokenRegistry) -> None:
        self._registry = registry

    def register_device_token(self, caller: Optional[Caller], token: str) -> None:
        caller = _require_caller(caller)
        self._registry.add(caller.user_id, token)

    def unregister_device_token(self, caller: Optional[Caller], token: str) -> None:
        caller = _require_caller(caller)
        self._registry.remove(caller.user_id, token)

    def list_device_tokens(self, caller: Optional[Caller]) -> set[str]:
        caller = _require_caller(caller)
        return self._registry.list_tokens(caller.user_id)
