"""
Database models package initialization.

Models are imported here so they register with the Base metadata for
Alembic and relationship resolution.
"""

from ordering.database.base import Base, BaseModel, CatalogModel
from ordering.database.models.catalog import Product, ProductOption, ProductOptionValue
from ordering.database.models.customer import Customer
from ordering.database.models.order import (
    Order,
    OrderLine,
    OrderLineOption,
    OrderStatusEvent,
)

__all__ = [
    "Base",
    "BaseModel",
    "CatalogModel",
    "Customer",
    "Order",
    "OrderLine",
    "OrderLineOption",
    "OrderStatusEvent",
    "Product",
    "ProductOption",
    "ProductOptionValue",
]
