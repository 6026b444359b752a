"""
Error taxonomy for the procurement engine.

Every failure is raised to the caller as one of these types; nothing here
is retried internally.  The REST layer decides how each one is presented.
"""
from typing import Optional


class ProcurementError(Exception):
    """Base class for all procurement engine errors."""


class ValidationError(ProcurementError):
    """Malformed input at creation, edit or reception time."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class OrderNotFoundError(ProcurementError):
    """No purchase order exists with the given id."""

    def __init__(self, order_id: str):
        super().__init__(f"Purchase order not found: {order_id}")
        self.order_id = order_id


class InvalidStateError(ProcurementError):
    """The order's current status does not allow the requested operation."""

    def __init__(self, order_id: str, status: str, event: str, message: Optional[str] = None):
        super().__init__(
            message or f"Cannot {event} purchase order {order_id} while it is {status!r}"
        )
        self.order_id = order_id
        self.status = status
        self.event = event


class UpstreamFailure(ProcurementError):
    """The catalog, supplier list or stock gateway failed."""


class ConcurrencyConflict(ProcurementError):
    """Another writer changed the order since it was read."""

    def __init__(self, order_id: str, expected_version: int):
        super().__init__(
            f"Purchase order {order_id} was modified concurrently "
            f"(expected version {expected_version})"
        )
        self.order_id = order_id
        self.expected_version = expected_version
