"""Custom exceptions for the alsupdate pipeline.

Defines specific exception types for better error handling and reporting.
Every exception carries an HTTP-style status code so the inspection API can
map it directly onto a response.
"""

from typing import Any, Dict, Optional


class ALSUpdateError(Exception):
    """Base exception for alsupdate errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception.

        Args:
            message: Human-readable error message
            status_code: HTTP status code for API responses
            details: Additional error details for debugging
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class MalformedRecordError(ALSUpdateError):
    """Raised when an input record cannot be decoded into four fields."""

    def __init__(self, record: str, reason: str):
        message = f"Malformed record {record!r}: {reason}"
        super().__init__(
            message=message,
            status_code=400,
            details={"record": record, "reason": reason},
        )


class InvalidHyperparameterError(ALSUpdateError):
    """Raised when a hyperparameter candidate violates its constraint."""

    def __init__(self, name: str, value: Any, constraint: str):
        message = f"Invalid hyperparameter {name}={value!r}: must be {constraint}"
        super().__init__(
            message=message,
            status_code=400,
            details={"name": name, "value": value, "constraint": constraint},
        )


class CorruptModelError(ALSUpdateError):
    """Raised when a persisted model does not decode consistently."""

    def __init__(self, path: str, reason: str):
        message = f"Corrupt model data at '{path}': {reason}"
        super().__init__(
            message=message,
            status_code=500,
            details={"path": path, "reason": reason},
        )


class EmptyHeldOutError(ALSUpdateError):
    """Raised when a metric has no held-out ratings it can score."""

    def __init__(self, metric: str):
        message = f"No held-out ratings could be scored for {metric}"
        super().__init__(
            message=message,
            status_code=422,
            details={"metric": metric},
        )


class ModelNotFoundError(ALSUpdateError):
    """Raised when no persisted model can be found."""

    def __init__(self, model_path: str, details: Optional[Dict[str, Any]] = None):
        message = f"Model not found at '{model_path}'. Please run an update first."
        super().__init__(
            message=message,
            status_code=503,
            details=details or {"model_path": model_path},
        )


class EntityNotFoundError(ALSUpdateError):
    """Raised when a user or item has no factor vector in the active model."""

    def __init__(self, role: str, entity_id: int):
        message = f"No factor vector for {role} id {entity_id} in the active model"
        super().__init__(
            message=message,
            status_code=404,
            details={"role": role, "id": entity_id},
        )
