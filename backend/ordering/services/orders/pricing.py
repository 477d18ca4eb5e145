"""
Authoritative cart pricing.

Client-submitted totals are never trusted: every line is priced from the
catalog as ``(product price + selected option adjustments) * quantity`` and the
order total is the sum of lines plus the delivery charge. All amounts are
Decimals quantized to cents with ROUND_HALF_UP.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Sequence, Union

from ordering.core.errors import OrderingError
from ordering.core.logging import get_logger
from ordering.services.orders.catalog import (
    CatalogOptionValue,
    CatalogProduct,
    CatalogReader,
)
from ordering.services.orders.enums import DeliveryMethod

logger = get_logger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Union[Decimal, int, float, str]) -> Decimal:
    """Quantize an amount to cents."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class InvalidProductError(OrderingError):
    """Raised when a cart references a missing or inactive product."""

    code = "INVALID_PRODUCT"
    status_code = 400


@dataclass(frozen=True)
class OptionSelection:
    option_id: int
    value_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class CartLine:
    """One untrusted cart line."""

    product_id: int
    quantity: int
    selections: tuple[OptionSelection, ...] = ()


@dataclass(frozen=True)
class PricedOption:
    option_id: int
    option_name: str
    value_id: int
    value_name: str
    price_adjustment: Decimal


@dataclass(frozen=True)
class PricedLine:
    position: int
    product_id: int
    product_name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    options: tuple[PricedOption, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PricingResult:
    lines: tuple[PricedLine, ...]
    subtotal: Decimal
    delivery_charge: Decimal
    total: Decimal

    def to_log_context(self) -> dict[str, Any]:
        return {
            "line_count": len(self.lines),
            "subtotal": str(self.subtotal),
            "delivery_charge": str(self.delivery_charge),
            "total": str(self.total),
        }


class PricingResolver:
    """
    Prices carts against the catalog.

    The resolver does not write anything and, for a given catalog snapshot,
    always produces the same result.
    """

    def __init__(self, delivery_charge: Decimal):
        self.delivery_charge = to_money(delivery_charge)

    async def resolve(
        self,
        catalog: CatalogReader,
        lines: Sequence[CartLine],
        delivery_method: DeliveryMethod,
    ) -> PricingResult:
        """
        Look up the catalog for a whole cart and price it.

        Products and option values are each fetched with one batched query;
        the option query is skipped when no options are selected.

        Args:
            catalog: Catalog reader bound to an open read scope
            lines: Cart lines in submission order
            delivery_method: Pickup or delivery

        Returns:
            Priced cart

        Raises:
            InvalidProductError: If any product is missing or inactive
        """
        product_ids = {line.product_id for line in lines}
        value_ids = {
            value_id
            for line in lines
            for selection in line.selections
            for value_id in selection.value_ids
        }

        products = await catalog.get_products(product_ids)
        option_values = await catalog.get_option_values(value_ids) if value_ids else {}

        return self.price(lines, delivery_method, products, option_values)

    def price(
        self,
        lines: Sequence[CartLine],
        delivery_method: DeliveryMethod,
        products: dict[int, CatalogProduct],
        option_values: dict[int, CatalogOptionValue],
    ) -> PricingResult:
        """Price a cart from already resolved catalog snapshots."""
        unavailable = sorted(
            {
                line.product_id
                for line in lines
                if line.product_id not in products
                or not products[line.product_id].is_active
            }
        )
        if unavailable:
            logger.warning("Cart references unavailable products", product_ids=unavailable)
            raise InvalidProductError(
                f"Product {unavailable[0]} is not available",
                product_id=unavailable[0],
                product_ids=unavailable,
            )

        priced_lines = tuple(
            self._price_line(position, line, products[line.product_id], option_values)
            for position, line in enumerate(lines)
        )

        subtotal = to_money(sum((line.line_total for line in priced_lines), ZERO))
        delivery_charge = (
            self.delivery_charge if delivery_method == DeliveryMethod.DELIVERY else ZERO
        )

        result = PricingResult(
            lines=priced_lines,
            subtotal=subtotal,
            delivery_charge=delivery_charge,
            total=to_money(subtotal + delivery_charge),
        )
        logger.debug("Cart priced", **result.to_log_context())
        return result

    def _price_line(
        self,
        position: int,
        line: CartLine,
        product: CatalogProduct,
        option_values: dict[int, CatalogOptionValue],
    ) -> PricedLine:
        applied: list[PricedOption] = []
        seen: set[tuple[int, int]] = set()

        for selection in line.selections:
            for value_id in selection.value_ids:
                if (selection.option_id, value_id) in seen:
                    continue
                value = option_values.get(value_id)
                # Stale or foreign selections are dropped silently.
                if (
                    value is None
                    or value.option_id != selection.option_id
                    or value.product_id != product.id
                ):
                    continue
                seen.add((selection.option_id, value_id))
                applied.append(
                    PricedOption(
                        option_id=value.option_id,
                        option_name=value.option_name,
                        value_id=value.id,
                        value_name=value.name,
                        price_adjustment=to_money(value.price_adjustment),
                    )
                )

        unit_price = to_money(
            to_money(product.price) + sum((o.price_adjustment for o in applied), ZERO)
        )

        return PricedLine(
            position=position,
            product_id=product.id,
            product_name=product.name,
            unit_price=unit_price,
            quantity=line.quantity,
            line_total=to_money(unit_price * line.quantity),
            options=tuple(applied),
        )
