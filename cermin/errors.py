"""Error taxonomy shared by stores, the gateway adapters and the HTTP layer.

Every error carries a machine-checkable ``kind`` and a user-safe message.
The HTTP layer maps kinds to status codes; nothing else leaks out.
"""

from enum import Enum


class ErrorKind(Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    GATEWAY = "gateway"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    INTERNAL = "internal"


HTTP_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.GATEWAY: 502,
    ErrorKind.GATEWAY_UNAVAILABLE: 503,
    ErrorKind.INTERNAL: 500,
}


class CerminError(Exception):
    """Base error with kind and user-safe message."""

    kind = ErrorKind.INTERNAL
    code = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    def as_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
        }

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(CerminError):
    kind = ErrorKind.VALIDATION
    code = "validation_error"


class NotFound(CerminError):
    kind = ErrorKind.NOT_FOUND
    code = "not_found"


class Conflict(CerminError):
    kind = ErrorKind.CONFLICT
    code = "conflict"


class DuplicatePaidOrder(Conflict):
    """Raised when the participant already holds a paid order for the event."""

    code = "duplicate_paid_order"

    def __init__(self, event_id: str, participant_id: str) -> None:
        super().__init__(
            "A paid order already exists for this email and event"
        )
        self.event_id = event_id
        self.participant_id = participant_id


class HasDependents(Conflict):
    """Raised when deleting an order that payments or a ticket reference."""

    code = "has_dependents"

    def __init__(self, order_id: str) -> None:
        super().__init__(
            "Order has related payments or a ticket and cannot be deleted"
        )
        self.order_id = order_id


class OrderAlreadySettled(Conflict):
    code = "order_already_settled"

    def __init__(self, order_id: str) -> None:
        super().__init__("Order is already paid")
        self.order_id = order_id


class OrderNotPayable(Conflict):
    code = "order_not_payable"

    def __init__(self, order_id: str, status: str) -> None:
        super().__init__(f"Order in status '{status}' cannot be charged")
        self.order_id = order_id
        self.status = status


class InvalidTransition(Conflict):
    code = "invalid_transition"

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Order status cannot change from '{current}' to '{target}'"
        )
        self.current = current
        self.target = target


class Unauthorized(CerminError):
    kind = ErrorKind.UNAUTHORIZED
    code = "unauthorized"


class Forbidden(CerminError):
    kind = ErrorKind.FORBIDDEN
    code = "forbidden"


class GatewayError(CerminError):
    kind = ErrorKind.GATEWAY
    code = "gateway_error"


class GatewayUnavailable(GatewayError):
    """Transport failure or timeout talking to the gateway; retryable."""

    kind = ErrorKind.GATEWAY_UNAVAILABLE
    code = "gateway_unavailable"


class InvalidNotification(GatewayError):
    """Notification failed signature or shape checks."""

    kind = ErrorKind.VALIDATION
    code = "invalid_notification"


class InternalError(CerminError):
    kind = ErrorKind.INTERNAL
    code = "internal_error"
