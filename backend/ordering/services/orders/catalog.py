"""
Read-only catalog lookups used to price carts.

Each lookup takes the full ID set of a cart and resolves it with one query,
so pricing costs at most two round trips however large the cart is.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Collection, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ordering.core.logging import get_logger
from ordering.database.models.catalog import Product, ProductOption, ProductOptionValue

logger = get_logger(__name__)


@dataclass(frozen=True)
class CatalogProduct:
    id: int
    name: str
    price: Decimal
    is_active: bool


@dataclass(frozen=True)
class CatalogOptionValue:
    id: int
    name: str
    price_adjustment: Decimal
    option_id: int
    option_name: str
    product_id: int


class CatalogReader(Protocol):
    """Batched catalog lookups keyed by ID."""

    async def get_products(self, product_ids: Collection[int]) -> dict[int, CatalogProduct]:
        ...

    async def get_option_values(
        self, value_ids: Collection[int]
    ) -> dict[int, CatalogOptionValue]:
        ...


class SqlCatalogReader:
    """Catalog reader backed by the relational store."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_products(self, product_ids: Collection[int]) -> dict[int, CatalogProduct]:
        """
        Fetch products by ID in one query.

        Args:
            product_ids: Product identifiers to resolve

        Returns:
            Mapping of found product ID to snapshot; missing IDs are absent
        """
        if not product_ids:
            return {}

        stmt = select(
            Product.id,
            Product.name,
            Product.price,
            Product.is_active,
        ).where(Product.id.in_(sorted(set(product_ids))))

        result = await self.session.execute(stmt)
        products = {
            row.id: CatalogProduct(
                id=row.id,
                name=row.name,
                price=row.price,
                is_active=row.is_active,
            )
            for row in result
        }

        logger.debug(
            "Catalog products resolved",
            requested=len(set(product_ids)),
            found=len(products),
        )
        return products

    async def get_option_values(
        self, value_ids: Collection[int]
    ) -> dict[int, CatalogOptionValue]:
        """
        Fetch option values with their option and owning product in one query.

        Args:
            value_ids: Option value identifiers to resolve

        Returns:
            Mapping of found value ID to snapshot; missing IDs are absent
        """
        if not value_ids:
            return {}

        stmt = (
            select(
                ProductOptionValue.id,
                ProductOptionValue.name,
                ProductOptionValue.price_adjustment,
                ProductOptionValue.option_id,
                ProductOption.name.label("option_name"),
                ProductOption.product_id,
            )
            .join(ProductOption, ProductOption.id == ProductOptionValue.option_id)
            .where(ProductOptionValue.id.in_(sorted(set(value_ids))))
        )

        result = await self.session.execute(stmt)
        values = {
            row.id: CatalogOptionValue(
                id=row.id,
                name=row.name,
                price_adjustment=row.price_adjustment,
                option_id=row.option_id,
                option_name=row.option_name,
                product_id=row.product_id,
            )
            for row in result
        }

        logger.debug(
            "Catalog option values resolved",
            requested=len(set(value_ids)),
            found=len(values),
        )
        return values
