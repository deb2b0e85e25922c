"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and map each to a consistent HTTP status.

    NotFoundError           → 404
    ValidationError         → 422
    ConflictError           → 409
    IllegalTransitionError  → 409
    PersistenceError        → 409 (precondition failed) / 503 (backend)

Usage:
    from portfolio.core.exceptions import IllegalTransitionError, ValidationError

    raise ValidationError("Invalid final review", details={"completion": "..."})
    raise IllegalTransitionError("postpone_evaluation", "confirmation")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Project").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation.

    Raised synchronously, before any store call; the workflow state is
    left exactly as it was.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation collides with an existing resource.

    Args:
        resource: Entity name.
        field: The field that collides.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class IllegalTransitionError(Exception):
    """Raised when an operation is invalid for the workflow's current step or mode.

    Unreachable from a correct client, but never silently ignored.

    Args:
        action: The operation that was attempted.
        step: The step the workflow was at (None when no workflow is open).
        reason: Optional detail.
    """

    def __init__(self, action: str, step: str | None = None, reason: str | None = None) -> None:
        msg = f"Cannot '{action}'"
        if step is not None:
            msg += f" at step '{step}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.action = action
        self.step = step
        self.reason = reason


class PersistenceError(Exception):
    """Raised when a store call fails or its precondition no longer holds.

    The workflow keeps every entered value so the caller can retry.

    Args:
        message: Human-readable explanation.
        reason: ``"precondition_failed"`` when the project changed under the
                workflow (closed or reactivated by another session),
                ``"backend"`` for database / network failures.
    """

    PRECONDITION_FAILED = "precondition_failed"
    BACKEND = "backend"

    def __init__(self, message: str, reason: str = BACKEND) -> None:
        self.reason = reason
        super().__init__(message)

    @property
    def is_precondition_failure(self) -> bool:
        return self.reason == self.PRECONDITION_FAILED
