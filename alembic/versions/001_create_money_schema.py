"""Create money subsystem schema

Revision ID: 001_money
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

# revision identifiers
revision = '001_money'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    ]


def upgrade():
    """Create users, courses, orders, ledger, commission and withdrawal tables"""

    # ====================
    # USERS TABLE
    # ====================
    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(255), unique=True, nullable=False),
        sa.Column('role', sa.String(50), server_default='student', nullable=False),
        sa.Column('referral_code', sa.String(10), unique=True, nullable=True),
        sa.Column('referred_by_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_referral_code', 'users', ['referral_code'])
    op.create_index('ix_users_referred_by_id', 'users', ['referred_by_id'])

    # ====================
    # COURSES / ENROLLMENTS
    # ====================
    op.create_table(
        'courses',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('title', sa.String(300), nullable=False),
        sa.Column('instructor_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('affiliate_commission_pct', sa.Numeric(5, 2), server_default='10', nullable=False),
        sa.Column('instructor_share_pct', sa.Numeric(5, 2), server_default='70', nullable=False),
        sa.Column('is_published', sa.Boolean, server_default='false', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.CheckConstraint(
            'affiliate_commission_pct + instructor_share_pct <= 100',
            name='ck_course_revenue_split'
        ),
    )
    op.create_index('ix_courses_instructor_id', 'courses', ['instructor_id'])

    # ====================
    # ORDERS TABLE
    # ====================
    op.create_table(
        'orders',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', sa.String(30), unique=True, nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('course_id', UUID(as_uuid=True), sa.ForeignKey('courses.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('final_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('coupon_code', sa.String(50), nullable=True),
        sa.Column('payment_method', sa.String(50), server_default='gateway', nullable=False),
        sa.Column('gateway_order_id', sa.String(100), unique=True, nullable=True),
        sa.Column('gateway_payment_id', sa.String(100), nullable=True),
        sa.Column('gateway_signature', sa.String(255), nullable=True),
        sa.Column('payment_status', sa.String(50), server_default='pending', nullable=False),
        sa.Column('order_status', sa.String(50), server_default='pending', nullable=False),
        sa.Column('referral_used_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('affiliate_commission', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('instructor_earnings', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('platform_earnings', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('commission_status', sa.String(50), server_default='pending', nullable=False),
        sa.Column('commission_processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('settlement_status', sa.String(50), server_default='pending', nullable=False),
        sa.Column('instructor_credited', sa.Boolean, server_default='false', nullable=False),
        sa.Column('platform_credited', sa.Boolean, server_default='false', nullable=False),
        sa.Column('settlement_error', sa.Text, nullable=True),
        sa.Column('is_refund_requested', sa.Boolean, server_default='false', nullable=False),
        sa.Column('refund_status', sa.String(50), nullable=True),
        sa.Column('refund_reason', sa.Text, nullable=True),
        sa.Column('refund_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('refund_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refund_processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('metadata', JSONB, nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_orders_order_id', 'orders', ['order_id'])
    op.create_index('ix_orders_gateway_order_id', 'orders', ['gateway_order_id'])
    op.create_index('ix_orders_gateway_payment_id', 'orders', ['gateway_payment_id'])
    op.create_index('ix_orders_course_id', 'orders', ['course_id'])
    op.create_index('ix_orders_referral_used_id', 'orders', ['referral_used_id'])
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'])
    op.create_index('ix_orders_payment_status_created', 'orders', ['payment_status', 'created_at'])

    op.create_table(
        'enrollments',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('course_id', UUID(as_uuid=True), sa.ForeignKey('courses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('user_id', 'course_id', name='uq_enrollment_user_course'),
    )
    op.create_index('ix_enrollments_user_id', 'enrollments', ['user_id'])
    op.create_index('ix_enrollments_course_id', 'enrollments', ['course_id'])

    # ====================
    # WALLET LEDGER
    # ====================
    op.create_table(
        'wallets',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False),
        sa.Column('balance', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('total_earned', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('total_topped_up', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('total_withdrawn', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('pending_withdrawals', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('currency', sa.String(3), server_default='INR', nullable=False),
        sa.Column('version', sa.Integer, server_default='0', nullable=False),
        sa.Column('last_transaction_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_wallets_user_id', 'wallets', ['user_id'])

    op.create_table(
        'transactions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('transaction_id', sa.String(30), unique=True, nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('wallet_id', UUID(as_uuid=True), sa.ForeignKey('wallets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sequence', sa.Integer, nullable=False),
        sa.Column('type', sa.String(10), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('balance_after', sa.Numeric(12, 2), nullable=False),
        sa.Column('description', sa.Text, server_default='', nullable=False),
        sa.Column('reference_type', sa.String(50), server_default='other', nullable=False),
        sa.Column('reference_id', sa.String(50), nullable=True),
        sa.Column('status', sa.String(20), server_default='completed', nullable=False),
        sa.Column('metadata', JSONB, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('wallet_id', 'sequence', name='uq_transactions_wallet_sequence'),
    )
    op.create_index('ix_transactions_transaction_id', 'transactions', ['transaction_id'])
    op.create_index('ix_transactions_reference', 'transactions', ['reference_type', 'reference_id'])
    op.create_index('ix_transactions_user_created', 'transactions', ['user_id', 'created_at'])

    op.create_table(
        'wallet_topups',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('topup_id', sa.String(30), unique=True, nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('gateway_order_id', sa.String(100), unique=True, nullable=False),
        sa.Column('gateway_payment_id', sa.String(100), nullable=True),
        sa.Column('status', sa.String(50), server_default='pending', nullable=False),
        sa.Column('transaction_id', sa.String(30), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_wallet_topups_topup_id', 'wallet_topups', ['topup_id'])
    op.create_index('ix_wallet_topups_user_id', 'wallet_topups', ['user_id'])
    op.create_index('ix_wallet_topups_gateway_order_id', 'wallet_topups', ['gateway_order_id'])

    # ====================
    # AFFILIATE COMMISSIONS
    # ====================
    op.create_table(
        'affiliate_commissions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('commission_id', sa.String(30), unique=True, nullable=False),
        sa.Column('affiliate_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('referred_user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('course_id', UUID(as_uuid=True), sa.ForeignKey('courses.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('level', sa.Integer, nullable=False),
        sa.Column('order_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('commission_percentage', sa.Numeric(5, 2), nullable=False),
        sa.Column('commission_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(50), server_default='pending', nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('needs_review', sa.Boolean, server_default='false', nullable=False),
        sa.Column('payout_method', sa.String(50), nullable=True),
        sa.Column('external_txn_id', sa.String(100), nullable=True),
        sa.Column('wallet_transaction_id', sa.String(30), nullable=True),
        sa.Column('payout_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_by_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('order_id', 'level', name='uq_commission_order_level'),
    )
    op.create_index('ix_affiliate_commissions_commission_id', 'affiliate_commissions', ['commission_id'])
    op.create_index('ix_affiliate_commissions_order_id', 'affiliate_commissions', ['order_id'])
    op.create_index('ix_commissions_affiliate_status', 'affiliate_commissions', ['affiliate_id', 'status'])

    # ====================
    # WITHDRAWALS
    # ====================
    op.create_table(
        'withdraw_requests',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('request_id', sa.String(30), unique=True, nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('processing_fee', sa.Numeric(12, 2), nullable=False),
        sa.Column('net_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_method', sa.String(50), nullable=False),
        sa.Column('payment_details', JSONB, server_default='{}', nullable=False),
        sa.Column('status', sa.String(50), server_default='pending', nullable=False),
        sa.Column('approved_by_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('transaction_id', sa.String(100), nullable=True),
        sa.Column('debit_transaction_id', sa.String(30), nullable=True),
        sa.Column('failure_reason', sa.Text, nullable=True),
        sa.Column('admin_notes', sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_withdraw_requests_request_id', 'withdraw_requests', ['request_id'])
    op.create_index('ix_withdraw_requests_user_status', 'withdraw_requests', ['user_id', 'status'])
    # One pending or processing request per user
    op.create_index(
        'uq_withdraw_requests_user_in_flight',
        'withdraw_requests',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'processing')"),
    )

    # ====================
    # COUPONS
    # ====================
    op.create_table(
        'coupons',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('code', sa.String(50), unique=True, nullable=False),
        sa.Column('discount_type', sa.String(50), server_default='percentage', nullable=False),
        sa.Column('discount_value', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('max_discount_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('minimum_order_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('usage_limit', sa.Integer, nullable=True),
        sa.Column('usage_limit_per_user', sa.Integer, server_default='1', nullable=False),
        sa.Column('used_count', sa.Integer, server_default='0', nullable=False),
        sa.Column('valid_from', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_coupons_code', 'coupons', ['code'])

    op.create_table(
        'coupon_usage',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('coupon_id', UUID(as_uuid=True), sa.ForeignKey('coupons.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('coupon_id', 'order_id', name='uq_coupon_usage_order'),
    )
    op.create_index('ix_coupon_usage_coupon_id', 'coupon_usage', ['coupon_id'])
    op.create_index('ix_coupon_usage_user_id', 'coupon_usage', ['user_id'])


def downgrade():
    """Drop all money subsystem tables"""
    op.drop_table('coupon_usage')
    op.drop_table('coupons')
    op.drop_table('withdraw_requests')
    op.drop_table('affiliate_commissions')
    op.drop_table('wallet_topups')
    op.drop_table('transactions')
    op.drop_table('wallets')
    op.drop_table('enrollments')
    op.drop_table('orders')
    op.drop_table('courses')
    op.drop_table('users')
