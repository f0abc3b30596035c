"""create_reconciliation_tables

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'carts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True, comment='顾客ID'),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='货币代码 ISO-4217'),
        sa.Column('total', sa.BigInteger(), nullable=False, comment='应付总额（最小货币单位）'),
        sa.Column('shipping', sa.BigInteger(), nullable=False, server_default='0', comment='运费'),
        sa.Column('lines', sa.JSON(), nullable=False, comment='商品行'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_carts_customer_id', 'carts', ['customer_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('cart_id', sa.Integer(), nullable=False, comment='购物车ID'),
        sa.Column('customer_id', sa.Integer(), nullable=True, comment='顾客ID'),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='货币代码'),
        sa.Column('total_paid', sa.BigInteger(), nullable=False, comment='实付金额（最小货币单位）'),
        sa.Column('shipping', sa.BigInteger(), nullable=False, server_default='0', comment='运费'),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='pending', comment='订单状态'),
        sa.Column('payment_method', sa.String(length=50), nullable=False, comment='支付方式名称'),
        sa.Column('has_invoice', sa.Boolean(), nullable=False, server_default=sa.false(), comment='是否已开票'),
        sa.Column('lines', sa.JSON(), nullable=False, comment='订单行'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_cart_id', 'orders', ['cart_id'], unique=True)
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])

    op.create_table(
        'order_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('previous_status', sa.String(length=30), nullable=True, comment='变更前状态'),
        sa.Column('status', sa.String(length=30), nullable=False, comment='变更后状态'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_history_order_id', 'order_history', ['order_id'])

    op.create_table(
        'credit_notes',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False, comment='退款金额'),
        sa.Column('shipping', sa.BigInteger(), nullable=False, server_default='0', comment='退还运费'),
        sa.Column('quantities', sa.JSON(), nullable=False, comment='各订单行退回数量'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', name='uq_credit_notes_order_id'),
    )
    op.create_index('ix_credit_notes_order_id', 'credit_notes', ['order_id'])

    op.create_table(
        'stripe_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('charge_id', sa.String(length=100), nullable=False, comment='渠道扣款ID'),
        sa.Column('order_id', sa.Integer(), nullable=False, comment='订单ID'),
        sa.Column('type', sa.String(length=30), nullable=False, comment='流水类型'),
        sa.Column('source', sa.String(length=20), nullable=False, comment='流水来源'),
        sa.Column('source_type', sa.String(length=50), nullable=True, comment='发起的支付方式'),
        sa.Column('amount', sa.BigInteger(), nullable=False, server_default='0', comment='金额'),
        sa.Column('card_last_digits', sa.String(length=4), nullable=True, comment='卡号后四位'),
        sa.Column('payment_intent_id', sa.String(length=100), nullable=True, comment='扣款所属的支付意图ID'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_stripe_transactions_order_id', 'stripe_transactions', ['order_id'])
    op.create_index('ix_stripe_transactions_charge_type', 'stripe_transactions', ['charge_id', 'type'])
    op.create_index('ix_stripe_transactions_charge_source', 'stripe_transactions', ['charge_id', 'source'])

    op.create_table(
        'stripe_reviews',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False, comment='订单ID'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='new'),
        sa.Column('reason', sa.String(length=50), nullable=True, comment='审核关闭原因'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_stripe_reviews_order_id', 'stripe_reviews', ['order_id'], unique=True)

    op.create_table(
        'payment_attempts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('cart_id', sa.Integer(), nullable=False, comment='购物车ID'),
        sa.Column('method_id', sa.String(length=50), nullable=False, comment='支付方式'),
        sa.Column('token', sa.String(length=512), nullable=False, comment='支付元数据令牌'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('cleared_at', sa.DateTime(timezone=True), nullable=True, comment='终态清除时间'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payment_attempts_cart_cleared', 'payment_attempts', ['cart_id', 'cleared_at'])


def downgrade() -> None:
    op.drop_index('ix_payment_attempts_cart_cleared', table_name='payment_attempts')
    op.drop_table('payment_attempts')
    op.drop_index('ix_stripe_reviews_order_id', table_name='stripe_reviews')
    op.drop_table('stripe_reviews')
    op.drop_index('ix_stripe_transactions_charge_source', table_name='stripe_transactions')
    op.drop_index('ix_stripe_transactions_charge_type', table_name='stripe_transactions')
    op.drop_index('ix_stripe_transactions_order_id', table_name='stripe_transactions')
    op.drop_table('stripe_transactions')
    op.drop_index('ix_credit_notes_order_id', table_name='credit_notes')
    op.drop_table('credit_notes')
    op.drop_index('ix_order_history_order_id', table_name='order_history')
    op.drop_table('order_history')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_customer_id', table_name='orders')
    op.drop_index('ix_orders_cart_id', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_carts_customer_id', table_name='carts')
    op.drop_table('carts')
