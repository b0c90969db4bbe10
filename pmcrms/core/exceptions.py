"""
Workflow-wide exception hierarchy.

Services raise these; blueprints register handlers against them once
(see ``pmcrms.blueprints.register_error_handlers``) and get consistent
HTTP status codes everywhere.

Usage:
    from pmcrms.core.exceptions import NotFoundError, UnauthorizedError

    raise NotFoundError(resource="Application", resource_id=app_id)
    raise UnauthorizedError("Officer cannot act on stage CLERK_PENDING")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Application", "Officer").
        resource_id: The key that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class UnauthorizedError(Exception):
    """Raised when the caller may not view or mutate the target.

    ``authenticated=False`` means no identity was presented at all (401);
    otherwise the identity is known but lacks rights (403).
    """

    def __init__(self, message: str = "Not authorized", *, authenticated: bool = True) -> None:
        self.authenticated = authenticated
        super().__init__(message)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(ValidationError):
    """Raised when a stage change is not an edge of the transition graph.

    Carries both the current and the attempted stage so the caller can
    show exactly which move was refused.
    """

    def __init__(self, current: str, attempted: str, trigger: str | None = None) -> None:
        self.current = current
        self.attempted = attempted
        self.trigger = trigger
        msg = f"Invalid stage transition from {current} to {attempted}"
        if trigger:
            msg += f" (trigger={trigger})"
        super().__init__(msg, details={"current_stage": current, "attempted_stage": attempted})


class ConflictError(Exception):
    """Raised on unique-constraint clashes or lost concurrent updates.

    Maps to HTTP 409.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class ExternalServiceError(Exception):
    """Raised when an outbound collaborator (HSM, payment gateway) fails.

    ``retryable`` tells the caller whether issuing the request again
    (e.g. with a fresh OTP) can succeed.
    """

    def __init__(self, service: str, message: str, *, retryable: bool = True) -> None:
        self.service = service
        self.retryable = retryable
        super().__init__(message)


class ConfigurationError(Exception):
    """Raised when required setup data is missing (e.g. an officer key label)."""


class OtpThrottledError(Exception):
    """Raised when an address has exhausted its OTP requests for the day."""
