import asyncio

import pytest

from application.services.user_service import UserDirectory
from domain.common.exceptions import UserNotFoundException


@pytest.mark.asyncio
async def test_ensure_user_creates_once(uow_factory):
    users = UserDirectory(uow_factory)
    created = await users.ensure_user("u1", "alice")
    again = await users.ensure_user("u1", "someone-else")
    assert created.username == "alice"
    assert again.username == "alice"


@pytest.mark.asyncio
async def test_username_defaults_to_user_id(uow_factory):
    users = UserDirectory(uow_factory)
    user = await users.ensure_user("firebase-uid-42")
    assert user.username == "firebase-uid-42"
    assert user.created_at is not None


@pytest.mark.asyncio
async def test_get_unknown_user(uow_factory):
    with pytest.raises(UserNotFoundException):
        await UserDirectory(uow_factory).get_user("nobody")


@pytest.mark.asyncio
async def test_concurrent_first_sight(uow_factory):
    users = UserDirectory(uow_factory)
    results = await asyncio.gather(*(users.ensure_user("u1") for _ in range(3)), return_exceptions=True)
    assert any(not isinstance(r, Exception) for r in results)
    assert (await users.get_user("u1")).user_id == "u1"
