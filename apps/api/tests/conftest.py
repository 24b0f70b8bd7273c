import sys
from pathlib import Path
from uuid import UUID

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from rewards_api import models  # noqa: E402,F401
from rewards_api.db.base import Base  # noqa: E402
from rewards_api.models.user import User  # noqa: E402
from rewards_api.observability.rewards import get_rewards_store  # noqa: E402


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture(autouse=True)
def reset_rewards_store():
    store = get_rewards_store()
    store.reset()
    yield store
    store.reset()


@pytest_asyncio.fixture
async def member(session_factory) -> UUID:
    async with session_factory() as session:
        user = User(email="member@example.com", display_name="Member")
        session.add(user)
        await session.commit()
        return user.id


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Engine on a database file so concurrent sessions use separate connections."""

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rewards.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_member(file_session_factory) -> UUID:
    async with file_session_factory() as session:
        user = User(email="concurrent@example.com", display_name="Concurrent")
        session.add(user)
        await session.commit()
        return user.id
