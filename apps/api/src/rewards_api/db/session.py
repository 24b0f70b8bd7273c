"""Async engine and session factories."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from rewards_api.core.settings import settings

engine = create_async_engine(settings.database_url, future=True)

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@asynccontextmanager
async def worker_session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Yield a session factory bound to a throwaway engine.

    Celery tasks drive the async services through ``asyncio.run``; pooled
    connections cannot outlive the loop that opened them, so each run gets
    its own NullPool engine.
    """

    task_engine = create_async_engine(settings.database_url, future=True, poolclass=NullPool)
    try:
        yield async_sessionmaker(task_engine, expire_on_commit=False, class_=AsyncSession)
    finally:
        await task_engine.dispose()


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


__all__ = ["engine", "async_session", "get_session", "worker_session_factory"]
