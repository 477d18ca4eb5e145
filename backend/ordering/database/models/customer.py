"""Customer model resolved at checkout by contact email."""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from ordering.database.base import CatalogModel


class Customer(CatalogModel):
    """Customer record; profile editing happens in the back office."""

    __tablename__ = "customers"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Customer full name",
    )

    phone: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="Customer phone number",
    )

    email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        comment="Customer email, lower-cased",
    )
