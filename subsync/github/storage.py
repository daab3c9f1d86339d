"""Persistence for conditional GitHub API responses."""

from __future__ import annotations

import datetime as dt  # noqa: TC003
import typing as typ

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from subsync.common.time import utcnow
from subsync.events.storage import Base, UTCDateTime

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


class GitHubCacheEntry(Base):
    """Last 200 response seen for a URL, keyed for ETag revalidation."""

    __tablename__ = "github_cache"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    url: Mapped[str] = mapped_column(String(1024), unique=True)
    etag: Mapped[str | None] = mapped_column(String(255), default=None)
    next_url: Mapped[str | None] = mapped_column(String(1024), default=None)
    body: Mapped[str] = mapped_column(Text(), default="")
    fetched_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


async def init_github_storage(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
