"""create_users_and_payment_history

Revision ID: 4f2a9c1d7e3b
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4f2a9c1d7e3b'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False, comment='外部用户ID'),
        sa.Column('username', sa.String(length=128), nullable=False, comment='用户名'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.UniqueConstraint('user_id', name='uq_users_user_id'),
    )

    op.create_table(
        'payment_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=100), nullable=False, comment='网关订单ID'),
        sa.Column('user_id', sa.String(length=128), nullable=True, comment='用户ID'),
        sa.Column('plan_id', sa.String(length=50), nullable=False, comment='套餐ID'),
        sa.Column('plan_name', sa.String(length=100), nullable=False, comment='套餐名称'),
        sa.Column('receipt', sa.String(length=40), nullable=True, comment='网关收据号'),
        sa.Column('amount', sa.Integer(), nullable=False, comment='金额（最小货币单位）'),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='货币代码 ISO-4217'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='Pending', comment='订单状态: Pending/Received/Rejected'),
        sa.Column('payment_id', sa.String(length=100), nullable=True, comment='网关支付ID'),
        sa.Column('signature', sa.String(length=128), nullable=True, comment='回调签名'),
        sa.Column('failure_reason', sa.Text(), nullable=True, comment='拒绝/失败原因'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True, comment='终态时间'),
        sa.PrimaryKeyConstraint('id', name='pk_payment_history'),
        sa.UniqueConstraint('order_id', name='uq_payment_history_order_id'),
        sa.CheckConstraint("status IN ('Pending', 'Received', 'Rejected')", name='ck_payment_history_status'),
    )

    op.create_index('ix_payment_history_user_id', 'payment_history', ['user_id'], unique=False)
    op.create_index('ix_payment_history_user_status', 'payment_history', ['user_id', 'status'], unique=False)
    op.create_index('ix_payment_history_status_created', 'payment_history', ['status', 'created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_payment_history_status_created', table_name='payment_history')
    op.drop_index('ix_payment_history_user_status', table_name='payment_history')
    op.drop_index('ix_payment_history_user_id', table_name='payment_history')
    op.drop_table('payment_history')
    op.drop_table('users')
