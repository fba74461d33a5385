"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="ApprovalLevel", resource_id=42)
    raise ValidationError("score must be between 0 and 100", details={"score": 140})

HTTP mapping (see blueprint error handlers):
    NotFoundError       404
    ValidationError     400
    ConflictError       409
    InvalidStateError   409
    TransactionError    500
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND ownership-chain failures
    (e.g. a level whose workflow belongs to another version). A 403 would
    confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable model/entity name (e.g. "ApprovalLevel").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is malformed or out of range.

    Always raised before any persistence write.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate of a unique resource.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value (truncated in HTTP response; full in logs).
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class InvalidStateError(Exception):
    """Raised when an operation is not allowed in the entity's current state.

    Example: a decision on a workflow that is already approved or rejected.
    Maps to HTTP 409.
    """

    def __init__(self, resource: str, current_state: str, reason: str) -> None:
        self.resource = resource
        self.current_state = current_state
        self.reason = reason
        super().__init__(f"{resource} is '{current_state}': {reason}")


class TransactionError(Exception):
    """Raised when the persistence transaction could not be committed.

    The session has already been rolled back when this is raised. No retry
    is attempted here; retry policy belongs to the caller.
    """

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"Transaction failed during {operation}")
