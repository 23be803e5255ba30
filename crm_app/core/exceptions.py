"""Error taxonomy shared by the booking and chat services.

Services raise these; ``core.exception_handler`` turns them into JSON
responses with a stable ``error`` kind.
"""
from typing import Any


class CRMError(Exception):
    kind: str = "internal_error"
    status_code: int = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(CRMError):
    kind = "validation_error"
    status_code = 400

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, field=field)
        self.field = field


class AuthorizationError(CRMError):
    kind = "authorization_error"
    status_code = 403

    def __init__(self, message: str = "Access denied."):
        # The reason stays server side.
        super().__init__("Access denied.")
        self.reason = message


class NotFoundError(CRMError):
    kind = "not_found"
    status_code = 404

    def __init__(self, resource: str, resource_id: Any = None):
        super().__init__(f"{resource} not found", resource=resource)
        self.resource = resource
        self.resource_id = resource_id


class InvalidTransitionError(CRMError):
    kind = "invalid_transition"
    status_code = 409

    def __init__(self, current, target, message: str | None = None):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            message or f"Cannot move booking from {current_value} to {target_value}",
            current=current_value,
            target=target_value,
        )
        self.current = current
        self.target = target
