"""
Translation of domain errors into HTTP errors.
"""

from typing import Any, NoReturn

from fastapi import HTTPException

from ordering.core.errors import OrderingError
from ordering.core.logging import get_logger

logger = get_logger(__name__)


def raise_http_error(error: OrderingError, operation: str, **context: Any) -> NoReturn:
    """
    Log a domain error and re-raise it as an HTTPException.

    The response detail is ``{"code", "message", "context"}``.
    """
    log = logger.error if error.status_code >= 500 else logger.warning
    log(
        f"{operation} failed",
        error_code=error.code,
        status_code=error.status_code,
        error=error.message,
        **context,
    )
    raise HTTPException(status_code=error.status_code, detail=error.to_detail()) from error
