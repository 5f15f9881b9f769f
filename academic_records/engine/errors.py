"""
Error taxonomy shared by the resolver, importer, deletion engine and upserts.

Row-local kinds (ScopeResolutionError, ValidationError) are caught by the
importer and turned into per-row messages. Operation-level kinds
(ConflictBlocked, NotFoundError, PartialDeletionError) propagate to the caller,
which renders them with ``to_dict()``.
"""
from http import HTTPStatus
from typing import Any, Dict, Optional


class ErrorCode:
    """Machine-readable error codes."""

    SCOPE_RESOLUTION = "SCOPE_RESOLUTION"
    AMBIGUOUS_REFERENCE = "AMBIGUOUS_REFERENCE"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_FIELD = "MISSING_FIELD"
    CONFLICT_BLOCKED = "CONFLICT_BLOCKED"
    NOT_FOUND = "NOT_FOUND"
    PARTIAL_DELETION = "PARTIAL_DELETION"
    UNKNOWN_ENTITY = "UNKNOWN_ENTITY"


class EngineError(Exception):
    """Base class with a consistent, serialisable structure."""

    status_code = HTTPStatus.BAD_REQUEST
    error = "Engine Error"
    default_code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code or self.default_code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "success": False,
            "error": self.error,
            "message": self.message,
            "code": self.code,
        }
        if self.details:
            result["details"] = self.details
        return result


class ScopeResolutionError(EngineError):
    """A natural key did not resolve inside its required scope."""

    status_code = HTTPStatus.NOT_FOUND
    error = "Scope Resolution Error"
    default_code = ErrorCode.SCOPE_RESOLUTION


class ValidationError(EngineError):
    """A field failed type/range coercion or a required field is missing."""

    status_code = HTTPStatus.BAD_REQUEST
    error = "Validation Error"
    default_code = ErrorCode.VALIDATION_ERROR


class NotFoundError(EngineError):
    """The target of a delete/upsert does not exist."""

    status_code = HTTPStatus.NOT_FOUND
    error = "Not Found"
    default_code = ErrorCode.NOT_FOUND

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(message)
        self.resource = resource
        self.identifier = identifier


class ConflictBlocked(EngineError):
    """Safe delete refused: live dependents exist. Nothing was mutated."""

    status_code = HTTPStatus.CONFLICT
    error = "Conflict"
    default_code = ErrorCode.CONFLICT_BLOCKED

    def __init__(self, label: str, dependents: Dict[str, int]):
        listed = ", ".join(f"{count} {name}" for name, count in dependents.items())
        super().__init__(
            f"Cannot delete {label}. It has {listed}. Please remove these dependencies first.",
            details={"dependents": dependents},
        )
        self.dependents = dependents


class PartialDeletionError(EngineError):
    """A forced delete failed at one layer; earlier layers stay deleted."""

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
    error = "Partial Deletion"
    default_code = ErrorCode.PARTIAL_DELETION

    def __init__(self, failed_layer: str, deleted: Dict[str, int], cause: Exception):
        super().__init__(
            f"Deletion stopped at {failed_layer}: {cause}",
            details={"failed_layer": failed_layer, "deleted": deleted},
        )
        self.failed_layer = failed_layer
        self.deleted = deleted
