"""Initial schema

Revision ID: 20260301_000001
Revises:
Create Date: 2026-03-01

Creates the tables for:
- users, api_keys: accounts and scoped API keys
- royalties, royalty_splits, advance_ledger: earned revenue and recoupment
- payout_recipients, payout_batches, payouts, payout_items: payouts
- analytics_events, analytics_summaries: event log and daily rollups

Enum columns are stored as VARCHAR(32) holding the member value.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '20260301_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name: str, **kwargs) -> sa.Column:
    kwargs.setdefault('nullable', False)
    return sa.Column(name, sa.Numeric(precision=15, scale=6), **kwargs)


def _rate(name: str, **kwargs) -> sa.Column:
    kwargs.setdefault('nullable', False)
    return sa.Column(name, sa.Numeric(precision=7, scale=6), **kwargs)


def upgrade() -> None:
    # Accounts
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('email_verified', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('country', sa.String(2), nullable=True),
        sa.Column('role', sa.String(32), nullable=False, index=True, server_default='artist'),
        sa.Column('status', sa.String(32), nullable=False, index=True, server_default='active'),
        sa.Column('verification_status', sa.String(32), nullable=False, server_default='unverified'),
        sa.Column('verification_notes', sa.String(500), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        _money('total_earnings', server_default='0'),
        _money('available_balance', server_default='0'),
        _money('pending_payouts', server_default='0'),
        sa.Column('last_payout_date', sa.DateTime(), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'api_keys',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('key_hash', sa.String(64), nullable=False, unique=True, index=True),
        sa.Column('prefix', sa.String(8), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('scopes', sa.JSON(), nullable=False),
        sa.Column('last_used', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True, index=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Payouts (created before royalty_splits, which reference payouts)
    op.create_table(
        'payout_recipients',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('tax_id', sa.String(50), nullable=True),
        sa.Column('tax_form_submitted', sa.Boolean(), nullable=False, server_default='false'),
        _rate('withholding_rate', server_default='0'),
        sa.Column('payment_method', sa.String(32), nullable=False, server_default='paypal'),
        sa.Column('payout_currency', sa.String(32), nullable=False, server_default='USD'),
        _money('minimum_payout_amount', server_default='0'),
        sa.Column('bank_account', sa.JSON(), nullable=True),
        sa.Column('paypal', sa.JSON(), nullable=True),
        sa.Column('address', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'payout_batches',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('status', sa.String(32), nullable=False, index=True, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payouts_created', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('recipients_skipped', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('recipients_conflicted', sa.Integer(), nullable=False, server_default='0'),
        _money('total_amount', server_default='0'),
        sa.Column('system_currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('payout_ids', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'payouts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('recipient_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('batch_id', sa.Uuid(), sa.ForeignKey('payout_batches.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('reference', sa.String(40), nullable=False, unique=True),
        sa.Column('status', sa.String(32), nullable=False, index=True, server_default='draft'),
        _money('amount', server_default='0'),
        sa.Column('currency', sa.String(32), nullable=False),
        _money('exchange_rate', server_default='1'),
        _money('amount_in_system_currency', server_default='0'),
        _money('fee_amount', server_default='0'),
        _money('tax_amount', server_default='0'),
        _money('net_amount', server_default='0'),
        sa.Column('payment_method', sa.String(32), nullable=False),
        sa.Column('payment_reference', sa.String(255), nullable=True),
        sa.Column('payment_date', sa.DateTime(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('processed_by', sa.Uuid(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Royalties
    op.create_table(
        'royalties',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('track_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('store_id', sa.Uuid(), nullable=True),
        sa.Column('store_name', sa.String(100), nullable=False),
        sa.Column('type', sa.String(32), nullable=False, server_default='stream'),
        sa.Column('status', sa.String(32), nullable=False, index=True, server_default='pending'),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        _money('rate', server_default='0'),
        _money('amount'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        _money('exchange_rate', server_default='1'),
        _money('amount_in_system_currency'),
        sa.Column('system_currency', sa.String(3), nullable=False, server_default='USD'),
        _rate('tax_rate', server_default='0'),
        _money('tax_amount', server_default='0'),
        _money('net_amount'),
        sa.Column('is_tax_processed', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('is_recouped', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('reporting_date', sa.Date(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'royalty_splits',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('royalty_id', sa.Uuid(), sa.ForeignKey('royalties.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('recipient_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('recipient_type', sa.String(32), nullable=False, server_default='user'),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('percentage', sa.Numeric(precision=7, scale=4), nullable=False),
        _money('amount', server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('is_recoupable', sa.Boolean(), nullable=False, server_default='false'),
        _money('advance_recouped', server_default='0'),
        _rate('tax_rate', nullable=True),
        _money('tax_amount', server_default='0'),
        _money('net_amount', server_default='0'),
        sa.Column('payout_id', sa.Uuid(), sa.ForeignKey('payouts.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('attached_at', sa.DateTime(), nullable=True),
        sa.Column('eligible_after', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'advance_ledger',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('recipient_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('entry_type', sa.String(32), nullable=False, index=True),
        _money('amount'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('royalty_split_id', sa.Uuid(), sa.ForeignKey('royalty_splits.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('reference', sa.String(255), nullable=True),
        sa.Column('effective_date', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'payout_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('payout_id', sa.Uuid(), sa.ForeignKey('payouts.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('royalty_id', sa.Uuid(), sa.ForeignKey('royalties.id', ondelete='RESTRICT'), nullable=False, index=True),
        _money('amount'),
        sa.Column('currency', sa.String(3), nullable=False),
        _money('exchange_rate', server_default='1'),
        _money('amount_in_payout_currency'),
        _money('tax_amount', server_default='0'),
        _money('fee_amount', server_default='0'),
        _money('net_amount'),
        sa.Column('split_ids', sa.JSON(), nullable=False),
    )

    # Analytics
    op.create_table(
        'analytics_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('event_type', sa.String(32), nullable=False, index=True),
        sa.Column('occurred_at', sa.DateTime(), nullable=False, index=True),
        sa.Column('day', sa.Date(), nullable=False, index=True),
        sa.Column('user_id', sa.Uuid(), nullable=True, index=True),
        sa.Column('user_role', sa.String(32), nullable=True),
        sa.Column('track_id', sa.Uuid(), nullable=True),
        sa.Column('store_id', sa.Uuid(), nullable=True),
        sa.Column('payout_id', sa.Uuid(), nullable=True),
        sa.Column('royalty_id', sa.Uuid(), nullable=True),
        sa.Column('country', sa.String(2), nullable=True),
        sa.Column('region', sa.String(100), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('device_type', sa.String(16), nullable=True),
        sa.Column('os', sa.String(50), nullable=True),
        sa.Column('browser', sa.String(50), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        _money('value', nullable=True),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('extra', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('malformed', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'analytics_summaries',
        sa.Column('day', sa.Date(), primary_key=True),
        sa.Column('total_events', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unique_users', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_plays', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_downloads', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_likes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_shares', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_signups', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_logins', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_uploads', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_other', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_unclassified', sa.Integer(), nullable=False, server_default='0'),
        _money('total_revenue', server_default='0'),
        _money('total_payouts', server_default='0'),
        sa.Column('by_country', sa.JSON(), nullable=False),
        sa.Column('by_device', sa.JSON(), nullable=False),
        sa.Column('by_os', sa.JSON(), nullable=False),
        sa.Column('by_browser', sa.JSON(), nullable=False),
        sa.Column('by_hour', sa.JSON(), nullable=False),
        sa.Column('user_ids', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    # Drop tables in reverse dependency order
    op.drop_table('analytics_summaries')
    op.drop_table('analytics_events')
    op.drop_table('payout_items')
    op.drop_table('advance_ledger')
    op.drop_table('royalty_splits')
    op.drop_table('royalties')
    op.drop_table('payouts')
    op.drop_table('payout_batches')
    op.drop_table('payout_recipients')
    op.drop_table('api_keys')
    op.drop_table('users')
