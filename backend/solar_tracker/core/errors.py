"""Error taxonomy shared by the workflow and closure services.

Each error carries a stable ``kind`` string that the HTTP layer maps to a
status code, a human-readable message, and optional structured details.
"""

from typing import Any


class WorkflowError(Exception):
    """Base class for expected business failures."""

    kind = "workflow_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self, include_details: bool = True) -> dict[str, Any]:
        body: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if include_details and self.details:
            body["details"] = self.details
        return body


class ValidationError(WorkflowError):
    """Malformed input or a request that violates a data invariant."""

    kind = "validation_error"


class SequenceViolation(WorkflowError):
    """A station or state transition was requested out of order."""

    kind = "sequence_violation"


class NotFoundError(WorkflowError):
    """Referenced order, panel, station or audit record does not exist."""

    kind = "not_found"


class NotReadyError(WorkflowError):
    """Closure requested while readiness rules are still failing."""

    kind = "not_ready"

    def __init__(self, message: str, blockers: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message, {"blockers": blockers or []})
        self.blockers = blockers or []


class AlreadyClosedError(WorkflowError):
    """The order is already in the COMPLETED state."""

    kind = "already_closed"


class NotCompletedError(WorkflowError):
    """Rollback requested for an order that is not closed."""

    kind = "not_completed"


class ConcurrentModificationError(WorkflowError):
    """Another closure or rollback holds the order."""

    kind = "concurrent_modification"


def validation_error_from_pydantic(exc: Any) -> ValidationError:
    """Wrap a pydantic.ValidationError raised outside request parsing."""
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    summary = "; ".join(f"{'.'.join(e['loc']) or 'input'}: {e['msg']}" for e in errors)
    return ValidationError(f"Invalid input: {summary}", {"errors": errors})
