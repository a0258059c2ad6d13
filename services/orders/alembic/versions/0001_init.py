from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(10, 2)


def upgrade():
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_number', sa.String(20), nullable=False),
        sa.Column('order_type', sa.String(20), nullable=False),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('user_name', sa.String(200), nullable=False),
        sa.Column('user_email', sa.String(255), nullable=True),
        sa.Column('user_phone', sa.String(50), nullable=True),
        sa.Column('delivery_address', sa.JSON, nullable=False),
        sa.Column('delivery_pincode', sa.String(12), nullable=False),
        sa.Column('delivery_distance_km', sa.Float, nullable=True),
        sa.Column('subtotal', MONEY, nullable=False),
        sa.Column('delivery_fee', MONEY, nullable=False),
        sa.Column('tax_amount', MONEY, nullable=False),
        sa.Column('discount_amount', MONEY, nullable=False),
        sa.Column('total_amount', MONEY, nullable=False),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('payment_status', sa.String(30), nullable=False),
        sa.Column('gateway_provider', sa.String(20), nullable=True),
        sa.Column('gateway_order_id', sa.String(100), nullable=True),
        sa.Column('gateway_session_id', sa.String(255), nullable=True),
        sa.Column('payment_id', sa.String(100), nullable=True),
        sa.Column('order_status', sa.String(30), nullable=False),
        sa.Column('estimated_delivery_time', sa.DateTime, nullable=True),
        sa.Column('delivery_person_id', sa.String(128), nullable=True),
        sa.Column('delivery_person_name', sa.String(200), nullable=True),
        sa.Column('delivery_person_phone', sa.String(50), nullable=True),
        sa.Column('assigned_admin_id', sa.String(128), nullable=True),
        sa.Column('admin_notes', sa.Text, nullable=False, server_default=''),
        sa.Column('special_instructions', sa.Text, nullable=True),
        sa.Column('order_date', sa.Date, nullable=True),
        sa.Column('slot_timing', sa.String(20), nullable=True),
        sa.Column('placed_at', sa.DateTime, nullable=False),
        sa.Column('confirmed_at', sa.DateTime, nullable=True),
        sa.Column('prepared_at', sa.DateTime, nullable=True),
        sa.Column('delivered_at', sa.DateTime, nullable=True),
        sa.Column('cancelled_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.Column('cancellation_reason', sa.Text, nullable=True),
        sa.Column('customer_rating', sa.Integer, nullable=True),
        sa.Column('customer_review', sa.Text, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_gateway_order_id', 'orders', ['gateway_order_id'], unique=True)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_delivery_pincode', 'orders', ['delivery_pincode'])
    op.create_index('ix_orders_order_status', 'orders', ['order_status'])
    op.create_index('ix_orders_delivery_person_id', 'orders', ['delivery_person_id'])
    op.create_index('ix_orders_assigned_admin_id', 'orders', ['assigned_admin_id'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('menu_item_id', sa.String(128), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('unit_price', MONEY, nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('is_veg', sa.Boolean, nullable=True),
        sa.Column('image_url', sa.String(500), nullable=True),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])


def downgrade():
    op.drop_table('order_items')
    op.drop_table('orders')
