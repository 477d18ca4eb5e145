"""
Alembic migration: Create customer, catalog and order tables.

Creates the read-only catalog tables priced at checkout, customers, orders
with server-computed totals, order items with selected option snapshots, and
the append-only order status update trail. Money columns are NUMERIC(10, 2)
and the order and line totals are enforced by CHECK constraints.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

order_status = postgresql.ENUM(
    'pending', 'confirmed', 'preparing', 'ready', 'delivering', 'delivered', 'cancelled',
    name='order_status',
    create_type=False,
)
payment_status = postgresql.ENUM(
    'pending', 'paid', 'failed',
    name='payment_status',
    create_type=False,
)
payment_method = postgresql.ENUM(
    'cash', 'card', 'online',
    name='payment_method',
    create_type=False,
)
delivery_method = postgresql.ENUM(
    'pickup', 'delivery',
    name='delivery_method',
    create_type=False,
)

ENUM_TYPES = (order_status, payment_status, payment_method, delivery_method)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
            comment='Timestamp when record was created',
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
            comment='Timestamp when record was last updated',
        ),
    ]


def upgrade() -> None:
    """
    Create ordering schema.

    Enum types are created once up front because order_status is shared by
    orders and order_status_updates.
    """
    bind = op.get_bind()
    for enum_type in ENUM_TYPES:
        enum_type.create(bind, checkfirst=True)

    # Catalog
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(length=255), nullable=False, comment='Product display name'),
        sa.Column('price', sa.Numeric(10, 2), nullable=False, comment='Base unit price'),
        sa.Column(
            'is_active',
            sa.Boolean(),
            nullable=False,
            server_default=sa.text('true'),
            comment='Inactive products cannot be ordered',
        ),
        *_timestamps(),
    )

    op.create_table(
        'product_options',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'product_id',
            sa.Integer(),
            sa.ForeignKey('products.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('name', sa.String(length=255), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_product_options_product_id', 'product_options', ['product_id'])

    op.create_table(
        'product_option_values',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'option_id',
            sa.Integer(),
            sa.ForeignKey('product_options.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column(
            'price_adjustment',
            sa.Numeric(10, 2),
            nullable=False,
            server_default=sa.text('0'),
        ),
        *_timestamps(),
    )
    op.create_index('ix_product_option_values_option_id', 'product_option_values', ['option_id'])

    # Customers
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True, unique=True),
        *_timestamps(),
    )

    # Orders
    op.create_table(
        'orders',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('order_number', sa.String(length=32), nullable=False, unique=True),
        sa.Column(
            'customer_id',
            sa.Integer(),
            sa.ForeignKey('customers.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('customer_name', sa.String(length=100), nullable=False),
        sa.Column('customer_phone', sa.String(length=20), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('delivery_method', delivery_method, nullable=False),
        sa.Column('delivery_address', sa.Text(), nullable=True),
        sa.Column('delivery_instructions', sa.Text(), nullable=True),
        sa.Column('payment_method', payment_method, nullable=False),
        sa.Column('payment_status', payment_status, nullable=False),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False),
        sa.Column('delivery_charge', sa.Numeric(10, 2), nullable=False),
        sa.Column('total', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', order_status, nullable=False),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=True, unique=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('subtotal >= 0', name='ck_orders_subtotal_non_negative'),
        sa.CheckConstraint('delivery_charge >= 0', name='ck_orders_delivery_charge_non_negative'),
        sa.CheckConstraint('total = subtotal + delivery_charge', name='ck_orders_total_matches'),
        sa.CheckConstraint(
            "delivery_method <> 'delivery' OR delivery_address IS NOT NULL",
            name='ck_orders_delivery_address_required',
        ),
    )
    op.create_index('ix_orders_status_created_at', 'orders', ['status', 'created_at'])
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])

    op.create_table(
        'order_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column(
            'product_id',
            sa.Integer(),
            sa.ForeignKey('products.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('line_total', sa.Numeric(10, 2), nullable=False),
        sa.CheckConstraint('quantity >= 1', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('line_total = unit_price * quantity', name='ck_order_items_line_total'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'order_item_options',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'order_item_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('order_items.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('option_id', sa.Integer(), nullable=True),
        sa.Column('option_name', sa.String(length=255), nullable=False),
        sa.Column('option_value_id', sa.Integer(), nullable=True),
        sa.Column('option_value_name', sa.String(length=255), nullable=False),
        sa.Column('price_adjustment', sa.Numeric(10, 2), nullable=False),
    )
    op.create_index('ix_order_item_options_order_item_id', 'order_item_options', ['order_item_id'])

    op.create_table(
        'order_status_updates',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('status', order_status, nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('actor', sa.String(length=255), nullable=True),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
        ),
    )
    op.create_index(
        'ix_order_status_updates_order_id_created_at',
        'order_status_updates',
        ['order_id', 'created_at'],
    )


def downgrade() -> None:
    """Drop ordering schema in reverse dependency order."""
    op.drop_index('ix_order_status_updates_order_id_created_at', table_name='order_status_updates')
    op.drop_table('order_status_updates')
    op.drop_index('ix_order_item_options_order_item_id', table_name='order_item_options')
    op.drop_table('order_item_options')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_customer_id', table_name='orders')
    op.drop_index('ix_orders_status_created_at', table_name='orders')
    op.drop_table('orders')
    op.drop_table('customers')
    op.drop_index('ix_product_option_values_option_id', table_name='product_option_values')
    op.drop_table('product_option_values')
    op.drop_index('ix_product_options_product_id', table_name='product_options')
    op.drop_table('product_options')
    op.drop_table('products')

    bind = op.get_bind()
    for enum_type in reversed(ENUM_TYPES):
        enum_type.drop(bind, checkfirst=True)
