"""Error taxonomy shared by the refinement machines."""
from typing import Any, Dict, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class ProcessingError(Exception):
    """Uniform machine-level error carrying the phase and state at failure."""

    kind = "internal"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        phase: Optional[str] = None,
        state: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.state = state

    def attach(self, phase: str, state: Dict[str, Any]) -> "ProcessingError":
        """Record where the failure happened."""
        self.phase = phase
        self.state = state
        return self

    def to_payload(self) -> Dict[str, str]:
        return {"error": self.message, "status": "failed"}


class InputValidationError(ProcessingError):
    """Malformed or out-of-range request fields."""

    kind = "validation"
    status_code = 400


class ReferenceNotFoundError(ProcessingError):
    """A revision or branch points at a step that does not exist."""

    kind = "not_found"
    status_code = 404


class InvariantViolationError(ProcessingError):
    """Request is well-formed but not allowed in the current configuration."""

    kind = "invariant"
    status_code = 409


class StorageError(ProcessingError):
    """Session store failure."""

    kind = "storage"
    status_code = 500


class ConflictError(StorageError):
    """Optimistic version check failed."""

    kind = "conflict"
    status_code = 409


class IntegrationError(ProcessingError):
    """Single wrapped error surfaced by the integrator."""

    def __init__(self, cause: Exception, **kwargs):
        message = cause.message if isinstance(cause, ProcessingError) else str(cause)
        super().__init__(f"Failed to process integrated step: {message}", **kwargs)
        self.cause = cause
        if isinstance(cause, ProcessingError):
            self.kind = cause.kind
            self.status_code = cause.status_code


def validate_request(
    model_cls: Type[ModelT],
    payload: Union[ModelT, Mapping[str, Any]],
) -> ModelT:
    """Parse a tool request, turning schema failures into InputValidationError."""
    if isinstance(payload, model_cls):
        return payload
    try:
        return model_cls.model_validate(payload)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
            for err in e.errors()
        )
        raise InputValidationError(f"Invalid parameters: {details}", phase="validation") from e
