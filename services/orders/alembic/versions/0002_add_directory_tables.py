"""add_directory_tables

Read models for users, addresses and delivery personnel.

Revision ID: 0002
Revises: 0001_init
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002'
down_revision = '0001_init'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(128), primary_key=True),
        sa.Column('display_name', sa.String(200), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone_number', sa.String(50), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_table(
        'addresses',
        sa.Column('id', sa.String(128), primary_key=True),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('title', sa.String(100), nullable=True),
        sa.Column('address_line1', sa.String(255), nullable=True),
        sa.Column('address_line2', sa.String(255), nullable=True),
        sa.Column('landmark', sa.String(255), nullable=True),
        sa.Column('area', sa.String(100), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(100), nullable=True),
        sa.Column('pincode', sa.String(12), nullable=True),
        sa.Column('country', sa.String(100), nullable=False, server_default='India'),
        sa.Column('latitude', sa.Float, nullable=True),
        sa.Column('longitude', sa.Float, nullable=True),
        sa.Column('contact_name', sa.String(200), nullable=True),
        sa.Column('contact_phone', sa.String(50), nullable=True),
        sa.Column('delivery_instructions', sa.Text, nullable=True),
        sa.Column('is_default', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_index('ix_addresses_user_id', 'addresses', ['user_id'])
    op.create_table(
        'delivery_persons',
        sa.Column('id', sa.String(128), primary_key=True),
        sa.Column('display_name', sa.String(200), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone_number', sa.String(50), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('last_assigned_at', sa.DateTime, nullable=True),
        sa.Column('last_login', sa.DateTime, nullable=True),
    )
    op.create_table(
        'delivery_person_pincodes',
        sa.Column('delivery_person_id', sa.String(128), sa.ForeignKey('delivery_persons.id'), primary_key=True),
        sa.Column('pincode', sa.String(12), primary_key=True),
    )
    op.create_index('ix_delivery_person_pincodes_pincode', 'delivery_person_pincodes', ['pincode'])


def downgrade() -> None:
    op.drop_table('delivery_person_pincodes')
    op.drop_table('delivery_persons')
    op.drop_table('addresses')
    op.drop_table('users')
