"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import CheckConstraint, Column, Integer, String, DateTime, Text, Index
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    """
    订单（支付历史）数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.Order 中
    """
    __tablename__ = "payment_history"

    # 主键（自增，仅用于稳定排序）
    id = Column(Integer, primary_key=True, autoincrement=True)

    # 订单信息
    order_id = Column(String(100), unique=True, nullable=False, comment="网关订单ID")
    user_id = Column(String(128), nullable=True, index=True, comment="用户ID")
    plan_id = Column(String(50), nullable=False, comment="套餐ID")
    plan_name = Column(String(100), nullable=False, comment="套餐名称")
    receipt = Column(String(40), nullable=True, comment="网关收据号")

    # 金额信息（最小货币单位）
    amount = Column(Integer, nullable=False, comment="金额（最小货币单位）")
    currency = Column(String(3), nullable=False, comment="货币代码 ISO-4217")

    # 状态
    status = Column(
        String(20),
        nullable=False,
        default="Pending",
        comment="订单状态: Pending/Received/Rejected"
    )

    # 校验信息（仅在离开 Pending 时写入）
    payment_id = Column(String(100), nullable=True, comment="网关支付ID")
    signature = Column(String(128), nullable=True, comment="回调签名")
    failure_reason = Column(Text, nullable=True, comment="拒绝/失败原因")

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    verified_at = Column(DateTime(timezone=True), nullable=True, comment="终态时间")

    __table_args__ = (
        Index("ix_payment_history_user_status", "user_id", "status"),
        Index("ix_payment_history_status_created", "status", "created_at"),
        CheckConstraint("status IN ('Pending', 'Received', 'Rejected')", name="status"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(order_id='{self.order_id}', user_id='{self.user_id}', "
            f"amount={self.amount}, status='{self.status}')>"
        )
