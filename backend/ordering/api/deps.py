"""
FastAPI dependencies for authentication, authorization and services.

This module provides bearer-token authentication, admin access control, and
the process-wide collaborators (payment gateway, idempotency guard, realtime
notifier) wired into per-request service instances.
"""

from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ordering.core.config import get_settings
from ordering.core.logging import get_logger, set_actor_id
from ordering.core.security import (
    Principal,
    TokenError,
    decode_token,
    principal_from_claims,
)
from ordering.services.notifications.notifier import (
    LoggingOrderNotifier,
    OrderNotifier,
    RedisOrderNotifier,
)
from ordering.services.orders.service import OrderService
from ordering.services.payments.idempotency import (
    IdempotencyGuard,
    InMemoryIdempotencyGuard,
    RedisIdempotencyGuard,
)
from ordering.services.payments.service import PaymentService
from ordering.services.payments.stripe_client import StripeClient, build_payment_gateway

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


def _authenticate(credentials: HTTPAuthorizationCredentials) -> Principal:
    principal = principal_from_claims(decode_token(credentials.credentials))
    set_actor_id(principal.subject)
    return principal


async def get_optional_principal(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Optional[Principal]:
    """
    Authenticate the caller if a bearer token is present.

    An unusable token is treated as anonymous.

    Returns:
        Principal or None
    """
    if credentials is None:
        return None

    try:
        return _authenticate(credentials)
    except TokenError as e:
        logger.warning("Ignoring unusable bearer token", error_code=e.code)
        return None


async def get_current_principal(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Principal:
    """
    Validate the bearer token.

    Raises:
        HTTPException: 401 if token is missing, invalid, or expired
    """
    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return _authenticate(credentials)
    except TokenError as e:
        logger.warning("Authentication failed", error_code=e.code)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def get_current_admin(
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> Principal:
    """
    Require admin role.

    Raises:
        HTTPException: 403 if the caller is not an admin
    """
    if not principal.is_admin:
        logger.warning("Access denied: Admin role required", subject=principal.subject)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return principal


@lru_cache()
def get_payment_gateway() -> Optional[StripeClient]:
    """Payment gateway built once from settings."""
    return build_payment_gateway(get_settings())


@lru_cache()
def get_idempotency_guard() -> IdempotencyGuard:
    if get_settings().redis_url:
        return RedisIdempotencyGuard()
    logger.warning("Redis not configured; webhook idempotency is process-local")
    return InMemoryIdempotencyGuard()


@lru_cache()
def get_notifier() -> OrderNotifier:
    if get_settings().redis_url:
        return RedisOrderNotifier()
    return LoggingOrderNotifier()


def get_payment_service(
    gateway: Annotated[Optional[StripeClient], Depends(get_payment_gateway)],
    guard: Annotated[IdempotencyGuard, Depends(get_idempotency_guard)],
    notifier: Annotated[OrderNotifier, Depends(get_notifier)],
) -> PaymentService:
    return PaymentService(gateway=gateway, guard=guard, notifier=notifier)


def get_order_service(
    payment_service: Annotated[PaymentService, Depends(get_payment_service)],
    notifier: Annotated[OrderNotifier, Depends(get_notifier)],
) -> OrderService:
    return OrderService(payment_service=payment_service, notifier=notifier)


OptionalPrincipal = Annotated[Optional[Principal], Depends(get_optional_principal)]
CurrentAdmin = Annotated[Principal, Depends(get_current_admin)]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
