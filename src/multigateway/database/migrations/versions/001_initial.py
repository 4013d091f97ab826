"""Initial migration - create transaction_records and transaction_history tables

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create transaction_records table
    op.create_table(
        'transaction_records',
        sa.Column('internal_id', sa.String(36), primary_key=True),
        sa.Column('provider_id', sa.String(255), nullable=True),
        sa.Column('provider_name', sa.String(50), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency_code', sa.String(3), nullable=False),
        sa.Column('status', sa.String(50), nullable=False, server_default='PENDING'),
        sa.Column('refunded_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.Column('last_provider_payload_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # Create indexes for transaction_records
    op.create_index('ix_transaction_records_provider_id', 'transaction_records', ['provider_id'])
    op.create_index('ix_transaction_records_status', 'transaction_records', ['status'])
    op.create_index('ix_transaction_records_created_at', 'transaction_records', ['created_at'])

    # Create transaction_history table
    op.create_table(
        'transaction_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'internal_id',
            sa.String(36),
            sa.ForeignKey('transaction_records.internal_id'),
            nullable=False,
        ),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('previous_status', sa.String(50), nullable=True),
        sa.Column('new_status', sa.String(50), nullable=False),
        sa.Column('provider_id', sa.String(255), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    # Create indexes for transaction_history
    op.create_index('ix_transaction_history_internal_id', 'transaction_history', ['internal_id'])
    op.create_index('ix_transaction_history_action', 'transaction_history', ['action'])
    op.create_index('ix_transaction_history_created_at', 'transaction_history', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_transaction_history_created_at', table_name='transaction_history')
    op.drop_index('ix_transaction_history_action', table_name='transaction_history')
    op.drop_index('ix_transaction_history_internal_id', table_name='transaction_history')
    op.drop_table('transaction_history')

    op.drop_index('ix_transaction_records_created_at', table_name='transaction_records')
    op.drop_index('ix_transaction_records_status', table_name='transaction_records')
    op.drop_index('ix_transaction_records_provider_id', table_name='transaction_records')
    op.drop_table('transaction_records')
