# slotgate/errors.py
"""
Domain error taxonomy.
Services raise these; main.py renders them as JSON with the matching HTTP status
so the caller can tell a bad request from a full lot from a gateway outage.
"""


class SlotGateError(Exception):
    status_code = 400
    kind = "error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "error": self.kind, "retryable": self.retryable}


class InvalidInputError(SlotGateError):
    """Malformed or missing fields, invalid time window. No side effects."""
    status_code = 400
    kind = "validation"


class NotFoundError(SlotGateError):
    status_code = 404
    kind = "not_found"


class AuthorizationError(SlotGateError):
    """Role or ownership mismatch."""
    status_code = 403
    kind = "authorization"


class StateConflictError(SlotGateError):
    """Operation not valid for the booking's current status / gate status."""
    status_code = 409
    kind = "state_conflict"


class BookingWindowElapsedError(StateConflictError):
    kind = "window_elapsed"


class OrderInProgressError(StateConflictError):
    """An unexpired hold for the same request is still waiting on its gateway order."""
    kind = "order_in_progress"
    retryable = True


class CapacityError(SlotGateError):
    status_code = 409
    kind = "capacity"
    retryable = True


class SecurityError(SlotGateError):
    """Signature or order-id mismatch on payment verification."""
    status_code = 400
    kind = "security"


class ExternalDependencyError(SlotGateError):
    """Payment gateway / plate provider unavailable, rate-limited or misconfigured."""
    status_code = 502
    kind = "external_dependency"

    def __init__(self, message: str, retryable: bool = True, status_code: int = None):
        super().__init__(message)
        self.retryable = retryable
        if status_code is not None:
            self.status_code = status_code


class ProviderUnavailableError(ExternalDependencyError):
    kind = "provider_unavailable"


class RateLimitedError(ExternalDependencyError):
    kind = "rate_limited"

    def __init__(self, message: str):
        super().__init__(message, retryable=True, status_code=429)


class MisconfiguredError(ExternalDependencyError):
    kind = "misconfigured"

    def __init__(self, message: str):
        super().__init__(message, retryable=False, status_code=503)
