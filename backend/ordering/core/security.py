"""
Bearer token verification for storefront customers and admin staff.

Tokens are issued by the external authentication service and share the
configured signing secret. This module decodes them with python-jose and
normalizes the claim names used across issuers into a ``Principal``.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from ordering.core.config import get_settings
from ordering.core.logging import get_logger

settings = get_settings()
logger = get_logger(__name__)


class TokenError(Exception):
    """Raised when a bearer token cannot be trusted."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


@dataclass(frozen=True)
class Principal:
    """Authenticated caller derived from token claims."""

    subject: str
    email: Optional[str] = None
    is_admin: bool = False
    customer_id: Optional[int] = None


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a JWT token.

    Args:
        token: JWT token string to decode

    Returns:
        Dictionary of decoded token claims

    Raises:
        TokenError: If token is empty, expired, or malformed
    """
    if not token:
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except ExpiredSignatureError as e:
        logger.warning("Token has expired", error=str(e))
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning("Invalid token", error=str(e), error_type=type(e).__name__)
        raise TokenError("Invalid token", code="TOKEN_INVALID") from e

    logger.debug("Token decoded", subject=payload.get("sub"))
    return payload


def principal_from_claims(claims: Dict[str, Any]) -> Principal:
    """
    Build a principal from decoded claims.

    Accepts ``sub``, ``userId`` or ``id`` as the subject and either an
    ``is_admin``/``isAdmin`` flag or ``role == "admin"``.

    Raises:
        TokenError: If no subject claim is present
    """
    subject = claims.get("sub") or claims.get("userId") or claims.get("id")
    if subject is None:
        raise TokenError("Token missing subject claim", code="TOKEN_INVALID")

    is_admin = bool(
        claims.get("is_admin")
        or claims.get("isAdmin")
        or claims.get("role") == "admin"
    )

    customer_id = claims.get("customer_id")
    try:
        customer_id = int(customer_id) if customer_id is not None else None
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed customer_id claim", subject=str(subject))
        customer_id = None

    return Principal(
        subject=str(subject),
        email=claims.get("email"),
        is_admin=is_admin,
        customer_id=customer_id,
    )
