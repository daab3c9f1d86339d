"""Dirty-flag registry for the local mirror of organisation repositories.

The mirror itself (bare clones on disk) is maintained by a separate process
that fetches every entry flagged dirty. This module only records which
repositories need fetching, either from the event log or, after a gap, by
listing every repository in the organisation.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses
import logging
import typing as typ
import urllib.parse

import msgspec
from sqlalchemy import select

from subsync.events.models import EventKind

from .storage import MirrorEntryRecord

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from subsync.events.queue import EventQueue

    SessionFactory: typ.TypeAlias = async_sessionmaker[AsyncSession]

logger = logging.getLogger(__name__)

MIRROR_QUEUE_NAME = "mirror"


class RepositorySource(typ.Protocol):
    """Lists every repository of the mirrored organisation."""

    def iter_repositories(self) -> cabc.AsyncIterator[typ.Any]:
        """Yield raw repository listings."""
        ...


class _RepositoryListing(msgspec.Struct):
    clone_url: str


@dataclasses.dataclass(frozen=True, slots=True)
class MirrorEntry:
    """Snapshot of a mirror row."""

    path: str
    url: str | None
    dirty: bool
    priority: int

    @classmethod
    def from_record(cls, record: MirrorEntryRecord) -> MirrorEntry:
        """Build a snapshot from the mirror row."""
        return cls(
            path=record.path,
            url=record.url,
            dirty=record.dirty,
            priority=record.priority,
        )


def mirror_path(url: str) -> str:
    """Return the key a repository URL is stored under."""
    return urllib.parse.urlsplit(url).path


def github_clone_url(repo: str) -> str:
    """Return the HTTPS clone URL for an ``owner/name`` repository."""
    return f"https://github.com/{repo}.git"


class MirrorRegistry:
    """Records which mirrored repositories need to be fetched."""

    def __init__(self, session_factory: SessionFactory) -> None:
        """Bind the registry to a database."""
        self._session_factory = session_factory

    @staticmethod
    async def _mark(session: AsyncSession, url: str, *, dirty: bool) -> None:
        path = mirror_path(url)
        entry = await session.scalar(
            select(MirrorEntryRecord).where(MirrorEntryRecord.path == path)
        )
        if entry is None:
            entry = MirrorEntryRecord(path=path, dirty=dirty)
            session.add(entry)
        elif not entry.dirty:
            entry.dirty = dirty
        # Rows created only to carry a priority have no URL yet.
        entry.url = url

    async def mark_dirty(self, url: str, *, dirty: bool = True) -> None:
        """Flag ``url`` for fetching; an existing dirty flag is never cleared."""
        async with self._session_factory() as session, session.begin():
            await self._mark(session, url, dirty=dirty)

    async def refresh(self, queue: EventQueue, source: RepositorySource) -> int:
        """Flag repositories with new activity and return how many were flagged.

        When ``queue`` has lost continuity every repository in the
        organisation is flagged instead.
        """
        if not await queue.continued_from_last_run():
            logger.info("Full refresh of mirrors because of gap in event queue")
            count = await self.refresh_all(source)
            await queue.mark_all_read()
            return count

        repos: dict[str, None] = {}
        newest: int | None = None
        for event in await queue.events():
            if event.kind in {EventKind.PUSH, EventKind.CREATE}:
                repos[event.repo] = None
            newest = event.source_id

        if repos:
            async with self._session_factory() as session, session.begin():
                for repo in repos:
                    await self._mark(session, github_clone_url(repo), dirty=True)
                    logger.info("Updated repo: %s", repo)
        if newest is not None:
            await queue.mark_read_up_to(newest)
        return len(repos)

    async def refresh_all(self, source: RepositorySource, *, dirty: bool = True) -> int:
        """Flag every repository ``source`` lists."""
        count = 0
        async with self._session_factory() as session, session.begin():
            async for item in source.iter_repositories():
                listing = msgspec.convert(item, _RepositoryListing)
                await self._mark(session, listing.clone_url, dirty=dirty)
                count += 1
        logger.info("Flagged %d mirrored repositories", count)
        return count

    async def entries(self) -> list[MirrorEntry]:
        """Return every mirror row ordered by path."""
        async with self._session_factory() as session:
            rows = (
                await session.scalars(
                    select(MirrorEntryRecord).order_by(MirrorEntryRecord.path)
                )
            ).all()
        return [MirrorEntry.from_record(row) for row in rows]

    async def dirty_entries(self) -> list[MirrorEntry]:
        """Return rows awaiting a fetch, in the order they should be fetched."""
        query = (
            select(MirrorEntryRecord)
            .where(MirrorEntryRecord.dirty.is_(True))
            .order_by(MirrorEntryRecord.priority, MirrorEntryRecord.path)
        )
        async with self._session_factory() as session:
            rows = (await session.scalars(query)).all()
        return [MirrorEntry.from_record(row) for row in rows]


__all__ = [
    "MIRROR_QUEUE_NAME",
    "MirrorEntry",
    "MirrorRegistry",
    "RepositorySource",
    "github_clone_url",
    "mirror_path",
]
