"""Initial savings ledger schema.

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
    # Users table
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('wallet_address', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('wallet_address')
    )
    op.create_index('ix_users_wallet_address', 'users', ['wallet_address'])

    # Immutable ledger, one row per transaction signature
    op.create_table(
        'savings_ledger',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('account_type', sa.String(10), nullable=False),
        sa.Column('direction', sa.String(10), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('principal_minor', sa.BigInteger(), nullable=False),
        sa.Column('interest_minor', sa.BigInteger(), nullable=False),
        sa.Column('fee_minor', sa.BigInteger(), nullable=False),
        sa.Column('signature', sa.String(128), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('signature')
    )
    op.create_index('ix_savings_ledger_user_type', 'savings_ledger', ['user_id', 'account_type'])

    # Aggregates, recomputed from the ledger
    op.create_table(
        'savings_accounts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('account_type', sa.String(10), nullable=False),
        sa.Column('principal_deposited', sa.BigInteger(), nullable=True),
        sa.Column('principal_withdrawn', sa.BigInteger(), nullable=True),
        sa.Column('interest_withdrawn', sa.BigInteger(), nullable=True),
        sa.Column('total_deposited', sa.BigInteger(), nullable=True),
        sa.Column('total_withdrawn', sa.BigInteger(), nullable=True),
        sa.Column('fees_paid', sa.BigInteger(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_savings_accounts_user_type', 'savings_accounts', ['user_id', 'account_type'], unique=True
    )

    # Lending sub-account per (user, account type)
    op.create_table(
        'protocol_positions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('account_type', sa.String(10), nullable=False),
        sa.Column('protocol_account', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_protocol_positions_user_type', 'protocol_positions', ['user_id', 'account_type'], unique=True
    )


def downgrade() -> None:
    op.drop_index('ix_protocol_positions_user_type', 'protocol_positions')
    op.drop_table('protocol_positions')
    op.drop_index('ix_savings_accounts_user_type', 'savings_accounts')
    op.drop_table('savings_accounts')
    op.drop_index('ix_savings_ledger_user_type', 'savings_ledger')
    op.drop_table('savings_ledger')
    op.drop_index('ix_users_wallet_address', 'users')
    op.drop_table('users')
