"""initial ledger schema

Revision ID: 20260301_initial
Revises:
Create Date: 2026-03-01 00:00:00.000000

Creates the complete vouchernet schema:
- franchisors / franchisees / merchants: the franchise network
- users / session_tokens: authentication
- vouchers / transactions / commissions: the voucher ledger
- charges: merchant activation billing
- audit_events / security_events: append-only trails
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20260301_initial'
down_revision = None
branch_labels = None
depends_on = None


def _now():
    return sa.text('CURRENT_TIMESTAMP')


def upgrade():
    # ============================================================================
    # Network
    # ============================================================================
    op.create_table(
        'franchisors',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'franchisees',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('franchisor_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('document', sa.String(length=18), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('commission_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('gateway_customer_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.ForeignKeyConstraint(['franchisor_id'], ['franchisors.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document', name='uq_franchisees_document'),
        sa.UniqueConstraint('gateway_customer_id', name='uq_franchisees_gateway_customer'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_franchisees_franchisor_id', 'franchisees', ['franchisor_id'])

    op.create_table(
        'merchants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('franchisee_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('document', sa.String(length=18), nullable=True),
        sa.Column('status', sa.String(length=24), nullable=False, server_default='DRAFT'),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_billed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['franchisee_id'], ['franchisees.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_merchants_franchisee_id', 'merchants', ['franchisee_id'])
    op.create_index('ix_merchants_status', 'merchants', ['status'])
    op.create_index('ix_merchants_franchisee_status', 'merchants', ['franchisee_id', 'status'])

    # ============================================================================
    # Auth
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('franchisor_id', sa.Integer(), nullable=True),
        sa.Column('franchisee_id', sa.Integer(), nullable=True),
        sa.Column('merchant_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['franchisor_id'], ['franchisors.id'], ),
        sa.ForeignKeyConstraint(['franchisee_id'], ['franchisees.id'], ),
        sa.ForeignKeyConstraint(['merchant_id'], ['merchants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_franchisor_id', 'users', ['franchisor_id'])
    op.create_index('ix_users_franchisee_id', 'users', ['franchisee_id'])
    op.create_index('ix_users_merchant_id', 'users', ['merchant_id'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_expires_at', 'session_tokens', ['expires_at'])
    op.create_index('ix_session_tokens_is_revoked', 'session_tokens', ['is_revoked'])
    op.create_index('ix_session_tokens_user_active', 'session_tokens', ['user_id', 'is_revoked'])

    # ============================================================================
    # Voucher ledger
    # ============================================================================
    # version_id: optimistic lock; a racing writer fails instead of
    # overwriting the balance (SQLite ignores FOR UPDATE)
    op.create_table(
        'vouchers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('scan_code', sa.String(length=128), nullable=False),
        sa.Column('balance_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='AVAILABLE'),
        sa.Column('franchisee_id', sa.Integer(), nullable=False),
        sa.Column('merchant_id', sa.Integer(), nullable=True),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('redeemed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['franchisee_id'], ['franchisees.id'], ),
        sa.ForeignKeyConstraint(['merchant_id'], ['merchants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_vouchers_code'),
        sa.UniqueConstraint('scan_code', name='uq_vouchers_scan_code'),
        sa.CheckConstraint('balance_cents >= 0', name='ck_vouchers_balance_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_vouchers_status', 'vouchers', ['status'])
    op.create_index('ix_vouchers_franchisee_id', 'vouchers', ['franchisee_id'])
    op.create_index('ix_vouchers_merchant_id', 'vouchers', ['merchant_id'])
    op.create_index('ix_vouchers_franchisee_status', 'vouchers', ['franchisee_id', 'status'])

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='COMPLETED'),
        sa.Column('voucher_id', sa.Integer(), nullable=False),
        sa.Column('merchant_id', sa.Integer(), nullable=False),
        sa.Column('customer_name', sa.String(length=160), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('receipt_code', sa.String(length=32), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('cancelled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['voucher_id'], ['vouchers.id'], ),
        sa.ForeignKeyConstraint(['merchant_id'], ['merchants.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['cancelled_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount_cents > 0', name='ck_transactions_amount_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transactions_kind', 'transactions', ['kind'])
    op.create_index('ix_transactions_status', 'transactions', ['status'])
    op.create_index('ix_transactions_receipt_code', 'transactions', ['receipt_code'])
    op.create_index('ix_transactions_voucher_created', 'transactions', ['voucher_id', 'created_at'])
    op.create_index('ix_transactions_merchant_created', 'transactions', ['merchant_id', 'created_at'])

    op.create_table(
        'commissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('rate_bps', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('franchisee_id', sa.Integer(), nullable=False),
        sa.Column('merchant_id', sa.Integer(), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['franchisee_id'], ['franchisees.id'], ),
        sa.ForeignKeyConstraint(['merchant_id'], ['merchants.id'], ),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_id', name='uq_commissions_transaction'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_commissions_status', 'commissions', ['status'])
    op.create_index('ix_commissions_merchant_id', 'commissions', ['merchant_id'])
    op.create_index('ix_commissions_franchisee_status', 'commissions', ['franchisee_id', 'status'])

    # ============================================================================
    # Billing
    # ============================================================================
    op.create_table(
        'charges',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('charge_type', sa.String(length=32), nullable=False, server_default='ACTIVATION'),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('gateway_charge_id', sa.String(length=64), nullable=True),
        sa.Column('payment_url', sa.String(length=512), nullable=True),
        sa.Column('qr_payload', sa.Text(), nullable=True),
        sa.Column('merchant_id', sa.Integer(), nullable=False),
        sa.Column('franchisee_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['merchant_id'], ['merchants.id'], ),
        sa.ForeignKeyConstraint(['franchisee_id'], ['franchisees.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('gateway_charge_id', name='uq_charges_gateway_charge_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_charges_status', 'charges', ['status'])
    op.create_index('ix_charges_merchant_id', 'charges', ['merchant_id'])
    op.create_index('ix_charges_franchisee_id', 'charges', ['franchisee_id'])
    op.create_index('ix_charges_status_due', 'charges', ['status', 'due_date'])
    # At most one live (PENDING/PAID) charge per merchant and type
    op.create_index(
        'uq_charges_merchant_live',
        'charges',
        ['merchant_id', 'charge_type'],
        unique=True,
        sqlite_where=sa.text("status IN ('PENDING', 'PAID')"),
        postgresql_where=sa.text("status IN ('PENDING', 'PAID')"),
    )

    # ============================================================================
    # Audit trails (append-only)
    # ============================================================================
    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('source', sa.String(length=16), nullable=False, server_default='api'),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('before', sa.JSON(), nullable=True),
        sa.Column('after', sa.JSON(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_events_actor_user_id', 'audit_events', ['actor_user_id'])
    op.create_index('ix_audit_events_action', 'audit_events', ['action'])
    op.create_index('ix_audit_events_entity', 'audit_events', ['entity_type', 'entity_id'])
    op.create_index('ix_audit_events_occurred', 'audit_events', ['occurred_at'])

    op.create_table(
        'security_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('resource', sa.String(length=128), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_security_events_user_id', 'security_events', ['user_id'])
    op.create_index('ix_security_events_event_type', 'security_events', ['event_type'])
    op.create_index('ix_security_events_success', 'security_events', ['success'])
    op.create_index('ix_security_events_occurred_at', 'security_events', ['occurred_at'])
    op.create_index('ix_security_events_user_type', 'security_events', ['user_id', 'event_type'])


def downgrade():
    op.drop_table('security_events')
    op.drop_table('audit_events')
    op.drop_index('uq_charges_merchant_live', table_name='charges')
    op.drop_table('charges')
    op.drop_table('commissions')
    op.drop_table('transactions')
    op.drop_table('vouchers')
    op.drop_table('session_tokens')
    op.drop_table('users')
    op.drop_table('merchants')
    op.drop_table('franchisees')
    op.drop_table('franchisors')
