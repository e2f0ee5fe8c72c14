"""create_wallet_fraud_tables

Revision ID: 4b1f0c9d2a7e
Revises:
Create Date: 2026-10-18 12:40:05.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4b1f0c9d2a7e'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.String(length=40), nullable=False),
        sa.Column('full_name', sa.String(length=100), nullable=True),
        sa.Column('wallet_balance', sa.DECIMAL(precision=12, scale=2), nullable=False),
        sa.Column('is_admin', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('user_id')
    )
    op.create_index('ix_users_user_id', 'users', ['user_id'])
    op.create_index('ix_users_account_id', 'users', ['account_id'], unique=True)

    op.create_table(
        'fraud_verdicts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.DECIMAL(precision=12, scale=2), nullable=False),
        sa.Column('transaction_type', sa.String(length=30), nullable=False),
        sa.Column('counterparty_id', sa.Integer(), nullable=True),
        sa.Column('counterparty_name', sa.String(length=100), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('country', sa.String(length=50), nullable=True),
        sa.Column('city', sa.String(length=50), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('location_changed', sa.Boolean(), nullable=True),
        sa.Column('location_suspicious', sa.Boolean(), nullable=True),
        sa.Column('distance_km', sa.Float(), nullable=True),
        sa.Column('rules_triggered', sa.Text(), nullable=True),
        sa.Column('rule_based_score', sa.Integer(), nullable=True),
        sa.Column('ai_risk_score', sa.Integer(), nullable=True),
        sa.Column('ai_confidence', sa.Integer(), nullable=True),
        sa.Column('ai_reasoning', sa.Text(), nullable=True),
        sa.Column('ai_red_flags', sa.Text(), nullable=True),
        sa.Column('ai_response_time', sa.Integer(), nullable=True),
        sa.Column('ai_error', sa.String(length=20), nullable=True),
        sa.Column('risk_score', sa.Integer(), nullable=False),
        sa.Column('risk_level', sa.String(length=10), nullable=False),
        sa.Column('action_taken', sa.String(length=10), nullable=False),
        sa.Column('detection_method', sa.String(length=20), nullable=False),
        sa.Column('execution_time_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('ground_truth', sa.String(length=12), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('verified_by', sa.Integer(), nullable=True),
        sa.Column('auto_approved', sa.Boolean(), nullable=True),
        sa.Column('is_true_positive', sa.Boolean(), nullable=True),
        sa.Column('is_false_positive', sa.Boolean(), nullable=True),
        sa.Column('is_true_negative', sa.Boolean(), nullable=True),
        sa.Column('is_false_negative', sa.Boolean(), nullable=True),
        sa.Column('revocation_reason', sa.Text(), nullable=True),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('revoked_by', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ),
        sa.ForeignKeyConstraint(['verified_by'], ['users.user_id'], ),
        sa.ForeignKeyConstraint(['revoked_by'], ['users.user_id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_fraud_verdicts_id', 'fraud_verdicts', ['id'])
    op.create_index('ix_fraud_verdicts_user_id', 'fraud_verdicts', ['user_id'])
    op.create_index('ix_fraud_verdicts_created_at', 'fraud_verdicts', ['created_at'])

    op.create_table(
        'fraud_appeals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('verdict_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=10), nullable=False),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_by', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['verdict_id'], ['fraud_verdicts.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ),
        sa.ForeignKeyConstraint(['resolved_by'], ['users.user_id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('verdict_id')
    )
    op.create_index('ix_fraud_appeals_id', 'fraud_appeals', ['id'])
    op.create_index('ix_fraud_appeals_user_id', 'fraud_appeals', ['user_id'])

    op.create_table(
        'wallet_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=30), nullable=False),
        sa.Column('amount', sa.DECIMAL(precision=12, scale=2), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('counterparty_id', sa.Integer(), nullable=True),
        sa.Column('linked_transaction_id', sa.Integer(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('country', sa.String(length=50), nullable=True),
        sa.Column('city', sa.String(length=50), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('money_status', sa.String(length=20), nullable=True),
        sa.Column('held_until', sa.DateTime(), nullable=True),
        sa.Column('resolution_action', sa.String(length=20), nullable=True),
        sa.Column('resolution_reason', sa.Text(), nullable=True),
        sa.Column('resolved_by', sa.Integer(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('verdict_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ),
        sa.ForeignKeyConstraint(['counterparty_id'], ['users.user_id'], ),
        sa.ForeignKeyConstraint(['resolved_by'], ['users.user_id'], ),
        sa.ForeignKeyConstraint(['linked_transaction_id'], ['wallet_transactions.id'], ),
        sa.ForeignKeyConstraint(['verdict_id'], ['fraud_verdicts.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_wallet_transactions_id', 'wallet_transactions', ['id'])
    op.create_index('ix_wallet_transactions_user_id', 'wallet_transactions', ['user_id'])
    op.create_index('ix_wallet_transactions_verdict_id', 'wallet_transactions', ['verdict_id'])
    op.create_index('ix_wallet_transactions_created_at', 'wallet_transactions', ['created_at'])

    op.create_table(
        'rate_limit_counters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=50), nullable=False),
        sa.Column('window', sa.String(length=10), nullable=False),
        sa.Column('window_start', sa.DateTime(), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key', 'window', name='uq_rate_limit_key_window')
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('rate_limit_counters')
    op.drop_index('ix_wallet_transactions_created_at', table_name='wallet_transactions')
    op.drop_index('ix_wallet_transactions_verdict_id', table_name='wallet_transactions')
    op.drop_index('ix_wallet_transactions_user_id', table_name='wallet_transactions')
    op.drop_index('ix_wallet_transactions_id', table_name='wallet_transactions')
    op.drop_table('wallet_transactions')
    op.drop_index('ix_fraud_appeals_user_id', table_name='fraud_appeals')
    op.drop_index('ix_fraud_appeals_id', table_name='fraud_appeals')
    op.drop_table('fraud_appeals')
    op.drop_index('ix_fraud_verdicts_created_at', table_name='fraud_verdicts')
    op.drop_index('ix_fraud_verdicts_user_id', table_name='fraud_verdicts')
    op.drop_index('ix_fraud_verdicts_id', table_name='fraud_verdicts')
    op.drop_table('fraud_verdicts')
    op.drop_index('ix_users_account_id', table_name='users')
    op.drop_index('ix_users_user_id', table_name='users')
    op.drop_table('users')
