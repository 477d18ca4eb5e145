"""
Order data access repository.

This module implements the OrderRepository class providing async methods for
persisting new orders, loading orders with their lines and status history,
paginated admin listings and customer find-or-create. Storage errors are
logged and propagated unchanged so the session scope can classify them.
"""

import uuid
from typing import Optional, Sequence, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ordering.core.errors import OrderingError
from ordering.core.logging import get_logger
from ordering.database.models.customer import Customer
from ordering.database.models.order import Order, OrderLine
from ordering.services.orders.enums import OrderStatus

logger = get_logger(__name__)


class OrderNotFoundError(OrderingError):
    """Raised when order is not found."""

    code = "ORDER_NOT_FOUND"
    status_code = 404


def parse_order_id(order_id: Union[uuid.UUID, str]) -> Optional[uuid.UUID]:
    """Coerce an order identifier to a UUID; malformed values give None."""
    if isinstance(order_id, uuid.UUID):
        return order_id
    try:
        return uuid.UUID(str(order_id))
    except ValueError:
        return None


class OrderRepository:
    """
    Repository for order data access operations.

    Works inside a session owned by the caller; it flushes but never commits.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize order repository.

        Args:
            session: Async database session
        """
        self.session = session

    def _order_query(self):
        return select(Order).options(
            selectinload(Order.lines).selectinload(OrderLine.options),
            selectinload(Order.status_events),
        )

    async def add_order(self, order: Order) -> Order:
        """
        Stage a new order together with its lines and events and flush it.

        Args:
            order: Fully built order aggregate

        Returns:
            The flushed order

        Raises:
            SQLAlchemyError: If the insert fails
        """
        try:
            self.session.add(order)
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to insert order",
                order_number=order.order_number,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        logger.info(
            "Order inserted",
            order_id=str(order.id),
            order_number=order.order_number,
            line_count=len(order.lines),
        )
        return order

    async def get_order_by_id(
        self,
        order_id: Union[uuid.UUID, str],
        for_update: bool = False,
    ) -> Optional[Order]:
        """
        Get order by ID with lines, options and status events loaded.

        Args:
            order_id: Order identifier
            for_update: Lock the order row until the transaction ends

        Returns:
            Order if found, None otherwise
        """
        parsed = parse_order_id(order_id)
        if parsed is None:
            logger.debug("Malformed order id", order_id=str(order_id))
            return None

        stmt = self._order_query().where(Order.id == parsed)
        if for_update:
            stmt = stmt.with_for_update(of=Order).execution_options(populate_existing=True)

        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch order by ID",
                order_id=str(order_id),
                error=str(e),
            )
            raise

        order = result.scalar_one_or_none()
        logger.debug("Order lookup", order_id=str(order_id), found=order is not None)
        return order

    async def require_order(
        self,
        order_id: Union[uuid.UUID, str],
        for_update: bool = False,
    ) -> Order:
        """
        Get order by ID or fail.

        Raises:
            OrderNotFoundError: If no order has this ID
        """
        order = await self.get_order_by_id(order_id, for_update=for_update)
        if order is None:
            raise OrderNotFoundError(
                f"Order {order_id} not found",
                order_id=str(order_id),
            )
        return order

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[Order], int]:
        """
        List orders newest first with pagination.

        Args:
            status: Optional status filter
            skip: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            Tuple of (orders, total_count)
        """
        logger.debug(
            "Listing orders",
            status=status.value if status else None,
            skip=skip,
            limit=limit,
        )

        stmt = self._order_query()
        count_stmt = select(func.count()).select_from(Order)
        if status is not None:
            stmt = stmt.where(Order.status == status)
            count_stmt = count_stmt.where(Order.status == status)

        stmt = stmt.order_by(Order.created_at.desc(), Order.id).offset(skip).limit(limit)

        try:
            result = await self.session.execute(stmt)
            count_result = await self.session.execute(count_stmt)
        except SQLAlchemyError as e:
            logger.error("Failed to list orders", error=str(e))
            raise

        orders = result.scalars().all()
        total_count = count_result.scalar_one()

        logger.debug("Orders listed", count=len(orders), total=total_count)
        return orders, total_count

    async def find_or_create_customer(
        self,
        name: str,
        phone: str,
        email: Optional[str],
        customer_id: Optional[int] = None,
    ) -> Optional[int]:
        """
        Resolve the customer an order belongs to.

        An existing ``customer_id`` (from the authenticated principal) wins.
        Otherwise a customer is matched by email, or created when none
        matches. Without either the order stays anonymous.

        Args:
            name: Contact name from checkout
            phone: Contact phone from checkout
            email: Contact email from checkout
            customer_id: Customer linked to the caller's token

        Returns:
            Customer ID or None for anonymous orders
        """
        if customer_id is not None:
            exists = await self.session.scalar(
                select(Customer.id).where(Customer.id == customer_id)
            )
            if exists is not None:
                return customer_id
            logger.warning("Token customer does not exist", customer_id=customer_id)

        if not email:
            return None

        normalized = email.strip().lower()
        existing = await self._find_customer_by_email(normalized)
        if existing is not None:
            return existing

        customer = Customer(name=name, phone=phone, email=normalized)
        try:
            async with self.session.begin_nested():
                self.session.add(customer)
                await self.session.flush()
        except IntegrityError:
            # Lost a race with a concurrent checkout for the same email.
            existing = await self._find_customer_by_email(normalized)
            if existing is None:
                raise
            return existing

        logger.info("Customer created", customer_id=customer.id)
        return customer.id

    async def _find_customer_by_email(self, email: str) -> Optional[int]:
        return await self.session.scalar(
            select(Customer.id).where(func.lower(Customer.email) == email)
        )
