"""Shared fixtures for unit tests."""

from __future__ import annotations

import typing as typ

import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from subsync.events import init_event_storage
from subsync.github import init_github_storage
from subsync.mirror import init_mirror_storage

if typ.TYPE_CHECKING:
    from pathlib import Path


async def _init_all_storage(engine: AsyncEngine) -> None:
    """Create the event log, GitHub cache and mirror tables."""
    await init_event_storage(engine)
    await init_github_storage(engine)
    await init_mirror_storage(engine)


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> typ.AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Yield a fresh async session factory backed by sqlite."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'subsync_test.db'}")
    try:
        await _init_all_storage(engine)
    except Exception:
        await engine.dispose()
        raise

    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()
