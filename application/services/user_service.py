"""
User directory: ensures a user record exists before orders reference it.

Authentication happens elsewhere; user ids arriving here are opaque and
already trusted by the caller.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from domain.common.exceptions import UserAlreadyExistsException, UserNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.user.entity import User
from core.logging_config import get_logger


logger = get_logger(__name__)


class UserDirectory:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]) -> None:
        self._uow_factory = uow_factory

    async def get_user(self, user_id: str) -> User:
        async with self._uow_factory(readonly=True) as uow:
            user = await uow.user_repository.get_by_id(user_id)
        if user is None:
            raise UserNotFoundException(user_id)
        return user

    async def ensure_user(self, user_id: str, username: Optional[str] = None) -> User:
        """Return the user, creating it on first sight."""
        async with self._uow_factory(readonly=True) as uow:
            existing = await uow.user_repository.get_by_id(user_id)
        if existing is not None:
            return existing

        try:
            async with self._uow_factory() as uow:
                created = await uow.user_repository.create(
                    User(
                        user_id=user_id,
                        username=username or user_id,
                        created_at=datetime.now(timezone.utc),
                    )
                )
        except UserAlreadyExistsException:
            # Lost a race with a concurrent first order for the same user
            return await self.get_user(user_id)
        logger.info("user_created", user_id=user_id)
        return created
