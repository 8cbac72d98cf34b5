"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from __future__ import annotations

import functools
from datetime import datetime
from typing import Optional, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from domain.common.exceptions import (
    InvalidOrderTransitionException,
    OrderAlreadyExistsException,
    OrderNotFoundException,
    PersistenceException,
)
from domain.payment.entity import Order, OrderStatus, OrderTransition
from domain.payment.repository import OrderRepository
from infrastructure.models.payment import OrderModel
from core.logging_config import get_logger


logger = get_logger(__name__)


# asyncpg 在连接失败时抛出原生 OSError（如 ConnectionRefusedError）
DB_ERRORS = (SQLAlchemyError, OSError)


def translate_db_errors(operation: str):
    """把数据库与驱动异常统一转换为 PersistenceException"""
    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            try:
                return await fn(*args, **kwargs)
            except DB_ERRORS as exc:
                logger.error("order_store_error", operation=operation, error=str(exc))
                raise PersistenceException(str(exc), operation=operation) from exc
        return wrapper
    return decorator


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            order_id=model.order_id,
            user_id=model.user_id,
            plan_id=model.plan_id,
            plan_name=model.plan_name,
            amount=model.amount,
            currency=model.currency,
            status=OrderStatus(model.status),
            receipt=model.receipt,
            created_at=model.created_at,
            verified_at=model.verified_at,
            payment_id=model.payment_id,
            signature=model.signature,
            failure_reason=model.failure_reason,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        return OrderModel(
            order_id=entity.order_id,
            user_id=entity.user_id,
            plan_id=entity.plan_id,
            plan_name=entity.plan_name,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            receipt=entity.receipt,
            created_at=entity.created_at,
            verified_at=entity.verified_at,
            payment_id=entity.payment_id,
            signature=entity.signature,
            failure_reason=entity.failure_reason,
        )

    @translate_db_errors("create")
    async def create(self, order: Order) -> Order:
        """创建订单"""
        try:
            db_order = self._to_model(order)
            self.session.add(db_order)
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            if "order_id" in str(e).lower():
                logger.warning("order_create_conflict", order_id=order.order_id)
                raise OrderAlreadyExistsException(order.order_id) from e
            raise
        logger.info(
            "order_created",
            order_id=db_order.order_id,
            user_id=db_order.user_id,
            plan_id=db_order.plan_id,
            amount=db_order.amount,
        )
        return self._to_entity(db_order)

    @translate_db_errors("get_by_id")
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        """根据订单ID获取订单"""
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.order_id == order_id)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    @translate_db_errors("list_by_user")
    async def list_by_user(self, user_id: str) -> List[Order]:
        """获取用户的订单列表（新的在前）"""
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.user_id == user_id)
            .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    @translate_db_errors("transition")
    async def transition(self, order_id: str, transition: OrderTransition) -> Order:
        """
        条件更新：WHERE order_id = :id AND status = 'Pending'

        单条 UPDATE 完成检查与写入，并发确认不会出现先读后写的竞争。
        """
        result = await self.session.execute(
            update(OrderModel)
            .where(
                OrderModel.order_id == order_id,
                OrderModel.status == OrderStatus.PENDING.value,
            )
            .values(
                status=transition.status.value,
                verified_at=transition.verified_at,
                payment_id=transition.payment_id,
                signature=transition.signature,
                failure_reason=transition.failure_reason,
            )
            .execution_options(synchronize_session=False)
        )

        # populate_existing：同一会话内可能缓存了转换前的对象
        current = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        db_order = current.scalar_one_or_none()
        if db_order is None:
            raise OrderNotFoundException(order_id)
        order = self._to_entity(db_order)

        if result.rowcount == 1:
            logger.info("order_transitioned", order_id=order_id, status=order.status.value)
            return order

        if transition.matches(order):
            logger.info("order_transition_replayed", order_id=order_id, status=order.status.value)
            return order

        logger.warning(
            "order_transition_conflict",
            order_id=order_id,
            current=order.status.value,
            target=transition.status.value,
        )
        raise InvalidOrderTransitionException(order_id, order.status.value, transition.status.value)

    @translate_db_errors("latest_active_for_user")
    async def latest_active_for_user(self, user_id: str) -> Optional[Order]:
        """用户最近一笔 Received 订单（走 user_id+status 索引）"""
        result = await self.session.execute(
            select(OrderModel)
            .where(
                OrderModel.user_id == user_id,
                OrderModel.status == OrderStatus.RECEIVED.value,
            )
            .order_by(
                OrderModel.verified_at.desc(),
                OrderModel.created_at.desc(),
                OrderModel.id.desc(),
            )
            .limit(1)
        )
        db_order = result.scalars().first()
        return self._to_entity(db_order) if db_order else None

    @translate_db_errors("list_stale_pending")
    async def list_stale_pending(self, created_before: datetime, limit: int = 100) -> List[Order]:
        """对账用：早于 created_before 的 Pending 订单"""
        result = await self.session.execute(
            select(OrderModel)
            .where(
                OrderModel.status == OrderStatus.PENDING.value,
                OrderModel.created_at < created_before,
            )
            .order_by(OrderModel.created_at.asc(), OrderModel.id.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
