"""
订单领域实体 - 订单聚合根与状态机规则
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException
from domain.payment.plan import Plan


class OrderStatus(str, Enum):
    """订单状态枚举"""
    PENDING = "Pending"      # 待确认
    RECEIVED = "Received"    # 已收款（签名校验通过）
    REJECTED = "Rejected"    # 已拒绝（签名错误/支付失败/过期）

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.RECEIVED, OrderStatus.REJECTED)

    def can_transition_to(self, target: "OrderStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.RECEIVED, OrderStatus.REJECTED}),
    OrderStatus.RECEIVED: frozenset(),
    OrderStatus.REJECTED: frozenset(),
}


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class OrderTransition:
    """
    一次离开 Pending 的状态转换及其附带字段

    业务规则：
    1. 目标状态必须是终态
    2. 转为 Received 必须携带 payment_id 和 signature
    """

    status: OrderStatus
    verified_at: datetime
    payment_id: Optional[str] = None
    signature: Optional[str] = None
    failure_reason: Optional[str] = None

    def __post_init__(self):
        if not self.status.is_terminal:
            raise DomainValidationException(
                f"Transition target must be terminal: {self.status.value}",
                field="status",
            )
        if self.status is OrderStatus.RECEIVED and not (self.payment_id and self.signature):
            raise DomainValidationException(
                "Received requires payment_id and signature",
                field="payment_id",
            )
        object.__setattr__(self, "verified_at", _ensure_utc(self.verified_at))

    @classmethod
    def received(cls, *, payment_id: str, signature: str, at: datetime) -> "OrderTransition":
        return cls(OrderStatus.RECEIVED, verified_at=at, payment_id=payment_id, signature=signature)

    @classmethod
    def rejected(cls, *, reason: str, at: datetime) -> "OrderTransition":
        return cls(OrderStatus.REJECTED, verified_at=at, failure_reason=reason)

    def matches(self, order: "Order") -> bool:
        """已处于相同终态且字段一致时视为重复投递（verified_at 不参与比较）"""
        return (
            order.status is self.status
            and order.payment_id == self.payment_id
            and order.signature == self.signature
            and order.failure_reason == self.failure_reason
        )


@dataclass
class Order:
    """
    订单聚合根

    业务规则：
    1. order_id 由网关分配，唯一且不可变
    2. 金额必须大于0，且只能来自价格目录
    3. Pending 状态下不得携带任何校验字段
    """

    order_id: str
    user_id: Optional[str]
    plan_id: str
    plan_name: str
    amount: int  # 最小货币单位（如 paise）
    currency: str  # ISO-4217
    status: OrderStatus
    receipt: Optional[str] = None
    created_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    payment_id: Optional[str] = None
    signature: Optional[str] = None
    failure_reason: Optional[str] = None

    def __post_init__(self):
        """初始化后验证"""
        if not self.order_id:
            raise DomainValidationException("order_id is required", field="order_id")
        if self.amount <= 0:
            raise DomainValidationException(
                f"Order amount must be positive: {self.amount}",
                field="amount",
            )
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(
                f"Invalid currency code: {self.currency}",
                field="currency",
            )
        self.status = OrderStatus(self.status)
        if self.status is OrderStatus.PENDING and any(
            (self.verified_at, self.payment_id, self.signature, self.failure_reason)
        ):
            raise DomainValidationException(
                "Pending order cannot carry verification fields",
                field="status",
            )
        self.created_at = _ensure_utc(self.created_at)
        self.verified_at = _ensure_utc(self.verified_at)

    @classmethod
    def open(
        cls,
        *,
        order_id: str,
        user_id: Optional[str],
        plan: Plan,
        receipt: Optional[str],
        created_at: datetime,
    ) -> "Order":
        """按价格目录创建一笔 Pending 订单"""
        return cls(
            order_id=order_id,
            user_id=user_id,
            plan_id=plan.id,
            plan_name=plan.name,
            amount=plan.amount,
            currency=plan.currency,
            status=OrderStatus.PENDING,
            receipt=receipt,
            created_at=created_at,
        )

    def is_final_status(self) -> bool:
        return self.status.is_terminal
