"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

This is the baseline migration that creates the users and bills tables for
the electricity billing service. It corresponds to database/models.py.
For databases created with `database.create_tables: true`, use
`alembic stamp 001_initial` to mark it as applied.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BILL_STATUS = sa.Enum('PENDING', 'PAID', name='bill_status')
PAYMENT_METHOD = sa.Enum(
    'CREDIT_CARD', 'DEBIT_CARD', 'UPI', 'NET_BANKING', 'CASH',
    name='payment_method'
)


def upgrade() -> None:
    """Create initial database schema."""

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('national_id', sa.String(64), nullable=False),
        sa.Column('email', sa.String(254), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('phone', sa.String(32)),
        sa.Column('address', sa.String(500)),
        sa.Column('password_hash', sa.String(128), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('is_deleted', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_users_is_deleted', 'users', ['is_deleted'])

    # Natural keys are unique among live rows only
    op.create_index(
        'uq_users_national_id_live', 'users', ['national_id'],
        unique=True,
        postgresql_where=sa.text('is_deleted = false'),
        sqlite_where=sa.text('is_deleted = 0')
    )
    op.create_index(
        'uq_users_email_live', 'users', ['email'],
        unique=True,
        postgresql_where=sa.text('is_deleted = false'),
        sqlite_where=sa.text('is_deleted = 0')
    )

    # Create bills table
    op.create_table(
        'bills',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(32), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('units', sa.Integer, nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('due_date', sa.Date, nullable=False),
        sa.Column('status', BILL_STATUS, nullable=False, server_default='PENDING'),
        sa.Column('payment_method', PAYMENT_METHOD),
        sa.Column('paid_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.CheckConstraint('units >= 0', name='ck_bills_units_non_negative'),
        sa.CheckConstraint('amount >= 0', name='ck_bills_amount_non_negative'),
    )
    op.create_index('ix_bills_user_id', 'bills', ['user_id'])
    op.create_index('ix_bills_status', 'bills', ['status'])
    op.create_index('ix_bills_user_status', 'bills', ['user_id', 'status'])


def downgrade() -> None:
    """Drop all tables and types."""
    # Drop tables in reverse order
    op.drop_table('bills')
    op.drop_table('users')

    # Drop enums
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        PAYMENT_METHOD.drop(bind, checkfirst=True)
        BILL_STATUS.drop(bind, checkfirst=True)
