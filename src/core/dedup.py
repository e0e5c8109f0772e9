"""Deduplication helpers (core domain)."""

from __future__ import annotations

import hashlib
from datetime import datetime

from core.models import ReportStatus


def transition_key(
    report_id: str,
    previous_status: ReportStatus,
    new_status: ReportStatus,
    mutated_at: datetime,
) -> str:
    """Return a deterministic key for one observed status transition.

    Redelivery of the same mutation yields the same key, while a later
    transition between the same two statuses differs by its timestamp.
    """

    payload = "\n".join(
        [report_id, previous_status.value, new_status.value, mutated_at.isoformat()]
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
