"""
Base exception for the ordering domain.

Every error a caller can act on carries a machine-readable ``code`` and the
HTTP status the API layer answers with. Concrete errors live next to the code
that raises them.
"""

from typing import Any


class OrderingError(Exception):
    """Base exception for ordering domain errors."""

    code: str = "ORDERING_ERROR"
    status_code: int = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_detail(self) -> dict[str, Any]:
        """Structured error body returned to API clients."""
        return {
            "code": self.code,
            "message": self.message,
            "context": {key: _jsonable(value) for key, value in self.context.items()},
        }


class ValidationFailedError(OrderingError):
    """Raised when a request is malformed beyond schema validation."""

    code = "VALIDATION_FAILED"
    status_code = 400


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    return str(value)
