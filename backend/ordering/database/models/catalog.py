"""
Catalog models read by checkout pricing.

The menu tables are maintained by the back office. Checkout only reads them,
through batched lookups, to price carts from authoritative data.
"""

from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ordering.database.base import CatalogModel


class Product(CatalogModel):
    """Menu item with its base price."""

    __tablename__ = "products"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Product display name",
    )

    price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Base unit price",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
        comment="Inactive products cannot be ordered",
    )

    options: Mapped[list["ProductOption"]] = relationship(
        "ProductOption",
        back_populates="product",
        lazy="raise",
    )


class ProductOption(CatalogModel):
    """A configurable choice on a product, such as size or extras."""

    __tablename__ = "product_options"

    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        comment="Product the option belongs to",
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Option display name",
    )

    product: Mapped["Product"] = relationship(
        "Product",
        back_populates="options",
        lazy="raise",
    )

    values: Mapped[list["ProductOptionValue"]] = relationship(
        "ProductOptionValue",
        back_populates="option",
        lazy="raise",
    )

    __table_args__ = (Index("ix_product_options_product_id", "product_id"),)


class ProductOptionValue(CatalogModel):
    """A selectable value of an option with its per-unit price adjustment."""

    __tablename__ = "product_option_values"

    option_id: Mapped[int] = mapped_column(
        ForeignKey("product_options.id", ondelete="CASCADE"),
        nullable=False,
        comment="Option the value belongs to",
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Value display name",
    )

    price_adjustment: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
        server_default=text("0"),
        comment="Amount added to the unit price when selected",
    )

    option: Mapped["ProductOption"] = relationship(
        "ProductOption",
        back_populates="values",
        lazy="raise",
    )

    __table_args__ = (Index("ix_product_option_values_option_id", "option_id"),)
