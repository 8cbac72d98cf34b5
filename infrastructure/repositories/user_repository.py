"""
用户仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from domain.user.entity import User
from domain.user.repository import UserRepository
from infrastructure.models.user import UserModel
from infrastructure.repositories.order_repository import translate_db_errors
from core.logging_config import get_logger
from domain.common.exceptions import UserAlreadyExistsException


logger = get_logger(__name__)


class SQLAlchemyUserRepository(UserRepository):
    """用户仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: UserModel) -> User:
        """将数据库模型转换为领域实体"""
        return User(
            user_id=model.user_id,
            username=model.username,
            created_at=model.created_at,
        )

    @translate_db_errors("user_create")
    async def create(self, user: User) -> User:
        """创建用户"""
        try:
            db_user = UserModel(
                user_id=user.user_id,
                username=user.username,
                created_at=user.created_at,
            )
            self.session.add(db_user)
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            logger.warning("create_user_conflict", user_id=user.user_id)
            raise UserAlreadyExistsException(user.user_id) from e
        return self._to_entity(db_user)

    @translate_db_errors("user_get_by_id")
    async def get_by_id(self, user_id: str) -> Optional[User]:
        """根据ID获取用户"""
        result = await self.session.execute(
            select(UserModel).where(UserModel.user_id == user_id)
        )
        db_user = result.scalar_one_or_none()
        return self._to_entity(db_user) if db_user else None
