"""
订单仓储接口 - 定义订单数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from .entity import Order, OrderTransition


class OrderRepository(ABC):
    """订单仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """创建订单；order_id 已存在时抛出 OrderAlreadyExistsException"""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        """根据订单ID获取订单"""
        pass

    @abstractmethod
    async def list_by_user(self, user_id: str) -> List[Order]:
        """获取用户的订单列表（新的在前）"""
        pass

    @abstractmethod
    async def transition(self, order_id: str, transition: OrderTransition) -> Order:
        """
        原子地将 Pending 订单转为终态

        - 订单不存在：OrderNotFoundException
        - 已是相同终态且字段一致：视为重复投递，直接返回
        - 其它情况：InvalidOrderTransitionException
        """
        pass

    @abstractmethod
    async def latest_active_for_user(self, user_id: str) -> Optional[Order]:
        """用户最近一笔 Received 订单"""
        pass

    @abstractmethod
    async def list_stale_pending(self, created_before: datetime, limit: int = 100) -> List[Order]:
        """创建时间早于 created_before 的 Pending 订单（旧的在前）"""
        pass
