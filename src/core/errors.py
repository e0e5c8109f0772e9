"""Error hierarchy shared by the core and its adapters.

Each error carries a stable ``code`` so outer layers (CLI, HTTP glue) can
report failures without matching on exception types.
"""

from __future__ import annotations

from core.models import DeliveryErrorKind


class HoumetnaError(Exception):
    """Base class for all errors raised on purpose by houmetna."""

    code = "internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class Unauthenticated(HoumetnaError):
    code = "unauthenticated"

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class PermissionDenied(HoumetnaError):
    code = "permission-denied"

    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(message)


class InvalidArgument(HoumetnaError):
    code = "invalid-argument"


class NotFound(HoumetnaError):
    code = "not-found"


class StoreFailure(HoumetnaError):
    """A durable read or write failed."""

    code = "store-failure"


class DeliveryFailure(HoumetnaError):
    """A single push send failed. Never fatal outside the fan-out engine."""

    code = "delivery-failure"

    def __init__(self, message: str, kind: DeliveryErrorKind = DeliveryErrorKind.UNKNOWN) -> None:
        super().__init__(message)
        self.kind = kind
