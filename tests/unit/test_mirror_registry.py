"""Unit tests for the mirror dirty-flag registry."""

from __future__ import annotations

import typing as typ

import pytest

from subsync.events import EventLog, EventQueue
from subsync.mirror import (
    MIRROR_QUEUE_NAME,
    MirrorEntryRecord,
    MirrorRegistry,
    github_clone_url,
    mirror_path,
)
from tests.unit.event_test_helpers import create_event, push_event, sha

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


class _Listing:
    """Organisation repository listing with fixed clone URLs."""

    def __init__(self, *names: str) -> None:
        self.names = names

    async def iter_repositories(self) -> cabc.AsyncIterator[dict[str, typ.Any]]:
        for name in self.names:
            yield {"name": name, "clone_url": github_clone_url(f"boostorg/{name}")}


def test_mirror_path_uses_url_path() -> None:
    """Entries are keyed by the URL path, ignoring the host."""
    assert mirror_path("https://github.com/boostorg/config.git") == (
        "/boostorg/config.git"
    )


@pytest.mark.asyncio
async def test_mark_dirty_never_clears_an_existing_flag(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Only a fetch may clear the flag; marking clean is ignored."""
    registry = MirrorRegistry(session_factory)
    url = github_clone_url("boostorg/config")

    await registry.mark_dirty(url)
    await registry.mark_dirty(url, dirty=False)

    [entry] = await registry.entries()
    assert entry.path == "/boostorg/config.git"
    assert entry.url == url
    assert entry.dirty is True


@pytest.mark.asyncio
async def test_dirty_entries_follow_priority_then_path(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Lower priorities are fetched first."""
    async with session_factory() as session, session.begin():
        session.add(MirrorEntryRecord(path="/boostorg/zeta.git", priority=-1))
    registry = MirrorRegistry(session_factory)
    for name in ("beta", "alpha", "zeta"):
        await registry.mark_dirty(github_clone_url(f"boostorg/{name}"))

    entries = await registry.dirty_entries()

    assert [entry.path for entry in entries] == [
        "/boostorg/zeta.git",
        "/boostorg/alpha.git",
        "/boostorg/beta.git",
    ]
    assert entries[0].url == github_clone_url("boostorg/zeta")


@pytest.mark.asyncio
async def test_refresh_flags_repositories_with_new_activity(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Pushes and creates since the last refresh mark their repository dirty."""
    log = EventLog(session_factory)
    await log.ingest([push_event(1, "boostorg/config", before=sha("a"), head=sha("b"))])
    queue = EventQueue(log, MIRROR_QUEUE_NAME)
    await queue.mark_all_read()
    await log.ingest(
        [
            create_event(3, "boostorg/build"),
            push_event(2, "boostorg/any", before=sha("a"), head=sha("b")),
        ]
    )
    registry = MirrorRegistry(session_factory)

    count = await registry.refresh(queue, _Listing("unused"))

    assert count == 2
    assert [entry.path for entry in await registry.dirty_entries()] == [
        "/boostorg/any.git",
        "/boostorg/build.git",
    ]
    assert await queue.position() == 3


@pytest.mark.asyncio
async def test_refresh_after_gap_flags_every_repository(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Without continuity every listed repository is flagged."""
    log = EventLog(session_factory)
    await log.ingest([push_event(7, "boostorg/config", before=sha("a"), head=sha("b"))])
    queue = EventQueue(log, MIRROR_QUEUE_NAME)
    registry = MirrorRegistry(session_factory)

    count = await registry.refresh(queue, _Listing("config", "any", "build"))

    assert count == 3
    assert len(await registry.dirty_entries()) == 3
    assert await queue.continued_from_last_run() is True


@pytest.mark.asyncio
async def test_refresh_all_can_register_without_flagging(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Listing with ``dirty=False`` only records the repositories."""
    registry = MirrorRegistry(session_factory)

    await registry.refresh_all(_Listing("config", "any"), dirty=False)

    assert [entry.path for entry in await registry.entries()] == [
        "/boostorg/any.git",
        "/boostorg/config.git",
    ]
    assert await registry.dirty_entries() == []
