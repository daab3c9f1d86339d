"""Command line entry point.

Each command builds the async engine from ``SUBSYNC_DATABASE_URL``, creates
any missing tables, runs to completion and returns a process exit code.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import functools
import json
import logging
import os
import sys
import typing as typ
from pathlib import Path

from cyclopts import App, Parameter
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from subsync import __version__
from subsync.config import ConfigError, SyncConfig
from subsync.events import EventKind, EventLog, EventQueue, init_event_storage
from subsync.git import GitRepository
from subsync.github import (
    GitHubCache,
    GitHubConfig,
    GitHubEventFeed,
    GitHubFetchError,
    GitHubUnexpectedResponseError,
    init_github_storage,
)
from subsync.logging import configure_logging
from subsync.mirror import MIRROR_QUEUE_NAME, MirrorRegistry, init_mirror_storage
from subsync.superproject import (
    SuperProject,
    SuperProjectConfigError,
    load_superprojects,
    select_branches,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.ext.asyncio import AsyncSession

    Command: typ.TypeAlias = cabc.Callable[[SyncConfig], cabc.Coroutine[typ.Any, typ.Any, int]]

logger = logging.getLogger(__name__)

app = App(
    name="subsync",
    help="Keep superproject submodules in sync with upstream pushes",
    version=__version__,
)


@dataclasses.dataclass(frozen=True, slots=True)
class Services:
    """Shared collaborators for a single command run."""

    session_factory: async_sessionmaker[AsyncSession]
    github: GitHubCache
    feed: GitHubEventFeed
    event_log: EventLog
    mirror: MirrorRegistry


@contextlib.asynccontextmanager
async def open_services(
    config: SyncConfig,
    *,
    github_config: GitHubConfig | None = None,
) -> cabc.AsyncIterator[Services]:
    """Create the engine, tables and GitHub client; dispose them on exit."""
    engine = create_async_engine(config.database_url)
    try:
        await init_event_storage(engine)
        await init_github_storage(engine)
        await init_mirror_storage(engine)
        session_factory = async_sessionmaker(engine, expire_on_commit=False)
        github = GitHubCache(session_factory, github_config or GitHubConfig.from_env())
        try:
            feed = GitHubEventFeed(github, config.github_org)
            yield Services(
                session_factory=session_factory,
                github=github,
                feed=feed,
                event_log=EventLog(session_factory, feed=feed),
                mirror=MirrorRegistry(session_factory),
            )
        finally:
            await github.aclose()
    finally:
        await engine.dispose()


async def _download_events(config: SyncConfig) -> int:
    async with open_services(config) as services:
        result = await services.event_log.download()
    print(
        f"Stored {result.stored} of {result.fetched} new events "
        f"(last id {result.last_id}{', gap detected' if result.gap_detected else ''})"
    )
    return 0


async def _update(
    config: SyncConfig, *, check_all: bool, branches: list[str] | None
) -> int:
    selected = select_branches(load_superprojects(config.superprojects_path), branches)
    async with open_services(config) as services:
        await services.event_log.download()
        failures = 0
        for settings in selected:
            repo = GitRepository(
                Path(settings.path),
                timeout_s=config.git_timeout_s,
                identity=config.git_identity,
            )
            superproject = SuperProject(
                settings,
                repo=repo,
                event_log=services.event_log,
                github=services.github,
                mirror=services.mirror,
                push_enabled=config.push_to_repo,
                max_attempts=config.push_attempts,
                organisation=config.github_org,
            )
            if not await superproject.update_from_events(check_all=check_all):
                failures += 1
    return 1 if failures else 0


async def _mirror_refresh(config: SyncConfig) -> int:
    async with open_services(config) as services:
        await services.event_log.download()
        queue = EventQueue(services.event_log, MIRROR_QUEUE_NAME)
        count = await services.mirror.refresh(queue, services.feed)
        for entry in await services.mirror.dirty_entries():
            print(f"{entry.url or entry.path} (needs update)")
    logger.info("Mirror refresh flagged %d repositories", count)
    return 0


async def _list_mirror(config: SyncConfig) -> int:
    async with open_services(config) as services:
        entries = await services.mirror.entries()
    for entry in entries:
        suffix = " (needs update)" if entry.dirty else ""
        print(f"{entry.url or entry.path}{suffix}")
    return 0


async def _list_events(config: SyncConfig, *, kind: EventKind | None) -> int:
    async with open_services(config) as services:
        events = await services.event_log.dump_events()
    for event in events:
        if kind is not None and event.kind is not kind:
            continue
        print(f"GitHub id: {event.source_id}")
        print(f"Type: {event.kind}")
        print(f"Branch: {event.branch or ''}")
        print(f"Repo: {event.repo}")
        print(f"Created: {event.created_at.isoformat() if event.created_at else ''}")
        print(f"Payload: {json.dumps(event.payload, indent=2, sort_keys=True)}")
        print()
    return 0


def _run(command: Command) -> int:
    try:
        return asyncio.run(command(SyncConfig.from_env()))
    except (
        ConfigError,
        SuperProjectConfigError,
        GitHubFetchError,
        GitHubUnexpectedResponseError,
    ) as exc:
        logger.error("%s", exc)  # noqa: TRY400
        return 1


@app.command
def download_events() -> int:
    """Pull new events from the organisation activity feed into the log.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    return _run(_download_events)


@app.command
def update(
    *,
    check_all: typ.Annotated[bool, Parameter(name="--all")] = False,
    branch: typ.Annotated[list[str] | None, Parameter(name="--branch")] = None,
) -> int:
    """Apply new pushes to every configured superproject.

    Args:
        check_all: Also compare every submodule with its GitHub branch head.
        branch: Only update superprojects on these branches.

    Returns:
        Exit code (0 when every superproject was updated, 1 otherwise).

    """
    return _run(functools.partial(_update, check_all=check_all, branches=branch))


@app.command
def mirror_refresh() -> int:
    """Flag mirrored repositories with new activity for fetching.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    return _run(_mirror_refresh)


@app.command
def list_mirror() -> int:
    """Print every mirrored repository, marking those that need a fetch.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    return _run(_list_mirror)


@app.command
def list_events(*, kind: EventKind | None = None) -> int:
    """Print every stored event, oldest first.

    Args:
        kind: Only print events of this type.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    return _run(functools.partial(_list_events, kind=kind))


def main() -> int:
    """Entry point for the CLI."""
    level = os.environ.get("SUBSYNC_LOG_LEVEL", "INFO")
    normalized, invalid = configure_logging(level)
    if invalid:
        logger.warning(
            "Invalid SUBSYNC_LOG_LEVEL %r, falling back to %s", level, normalized
        )
    return app()


if __name__ == "__main__":
    sys.exit(main())
