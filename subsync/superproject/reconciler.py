"""Submodule reconciliation for a single superproject branch.

Each pass rebuilds the submodule table from a clean checkout and replays
unread push events against it. A push whose ``before`` hash is what the
superproject currently points at is applied as its own commit and pushed
straight away, so the superproject history mirrors the upstream push order.
Pushes that do not chain from the known state are counted and reported but
never applied.

When the event queue has lost continuity the pass falls back to a full
resynchronisation: every submodule's branch head is read from GitHub, pushes
that landed during the lookups are replayed on top, and everything is
committed together.
"""

from __future__ import annotations

import logging
import typing as typ

from subsync.events.models import EventKind
from subsync.events.queue import EventQueue
from subsync.git.errors import GitError
from subsync.git.repository import PushStatus
from subsync.github.errors import (
    GitHubFetchError,
    GitHubNotFoundError,
    GitHubUnexpectedResponseError,
)
from subsync.mirror.registry import github_clone_url

from .errors import ReconciliationConflictError
from .messages import update_message
from .models import DEFAULT_ORGANISATION, CommitResult, Submodule

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from subsync.events.ingestion import EventLog
    from subsync.events.models import ActivityEvent
    from subsync.git.repository import PushResult
    from subsync.mirror.registry import MirrorRegistry

    from .config import SuperProjectSettings

    Submodules: typ.TypeAlias = dict[str, Submodule]

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 2

_PASS_ERRORS = (
    GitError,
    GitHubFetchError,
    GitHubUnexpectedResponseError,
    ReconciliationConflictError,
)


class SuperProjectRepository(typ.Protocol):
    """Git operations the reconciler needs from the superproject checkout."""

    async def setup_clean_checkout(self, url: str, branch: str) -> None:
        """Bring the checkout to the tip of ``branch``."""
        ...

    async def read_submodule_config(self) -> dict[str, dict[str, str]]:
        """Return ``.gitmodules`` settings grouped by submodule."""
        ...

    async def current_hashes(
        self, paths: cabc.Sequence[str], ref: str = "HEAD"
    ) -> dict[str, str]:
        """Return the commit each submodule path points at."""
        ...

    async def commit(self, tree_updates: cabc.Mapping[str, str], message: str) -> None:
        """Commit new submodule pointers."""
        ...

    async def push(self) -> PushResult:
        """Push the superproject branch."""
        ...


class BranchHeadSource(typ.Protocol):
    """Looks up the commit a remote branch points at."""

    async def branch_head(self, repo: str, branch: str) -> str:
        """Return the head of ``branch`` in ``repo``."""
        ...


class SuperProject:
    """Keeps one superproject branch's submodule pointers up to date."""

    def __init__(  # noqa: PLR0913
        self,
        settings: SuperProjectSettings,
        *,
        repo: SuperProjectRepository,
        event_log: EventLog,
        github: BranchHeadSource,
        mirror: MirrorRegistry | None = None,
        push_enabled: bool = False,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        organisation: str = DEFAULT_ORGANISATION,
    ) -> None:
        """Wire the reconciler to its checkout, event log and GitHub access."""
        self.settings = settings
        self.repo = repo
        self.event_log = event_log
        self.github = github
        self.mirror = mirror
        self.push_enabled = push_enabled
        self.max_attempts = max(1, max_attempts)
        self.organisation = organisation
        self.queue = EventQueue(event_log, settings.queue_name, kind=EventKind.PUSH)
        self.push_warning = False

    @property
    def submodule_branch(self) -> str:
        """Return the submodule branch whose pushes are followed."""
        return self.settings.submodule_branch

    async def update_from_events(self, *, check_all: bool = False) -> bool:
        """Run one reconciliation pass and return whether it succeeded.

        Parameters
        ----------
        check_all : bool
            Also compare every submodule against its GitHub branch head, to
            catch pushes the event feed never delivered.

        """
        label = self.settings.label
        try:
            if not await self.queue.continued_from_last_run():
                logger.info(
                    "%s: full refresh of submodules because of gap in event queue",
                    label,
                )
                result = await self._attempt_and_push(self._full_resync)
                if result:
                    await self.queue.mark_all_read()
            elif check_all:
                logger.info("%s: refresh from event queue and sync all", label)
                result = await self._update_from_queue(check_all=True)
            else:
                logger.info("%s: refresh submodules from event queue", label)
                result = await self._update_from_queue()
        except _PASS_ERRORS:
            logger.exception("%s: reconciliation pass failed", label)
            return False

        if self.push_warning:
            logger.warning("%s: changes not pushed, as configured not to", label)
            self.push_warning = False
        return result

    async def _attempt_and_push(
        self, attempt: cabc.Callable[[], cabc.Awaitable[bool]]
    ) -> bool:
        """Rebuild from a clean checkout and push, retrying rejected pushes.

        ``attempt`` returns whether it committed anything. A rejected push
        means the branch moved upstream, so the whole checkout and rebuild is
        repeated rather than just the push.
        """
        label = self.settings.label
        for number in range(1, self.max_attempts + 1):
            await self.repo.setup_clean_checkout(
                self.settings.clone_url, self.settings.superproject_branch
            )
            if not await attempt():
                return True
            if not self.push_enabled:
                logger.warning(
                    "%s: processed, not configured to push to repo",
                    self.settings.path,
                )
                return False

            pushed = await self.repo.push()
            if pushed.status is PushStatus.OK:
                return True
            if pushed.status is PushStatus.ERROR:
                logger.error("%s: push failed: %s", label, pushed.stderr)
                return False
            logger.warning("%s: attempt %d: push rejected", label, number)

        logger.error("%s: failed to push after %d attempts", label, self.max_attempts)
        return False

    async def _full_resync(self) -> bool:
        submodules = await self.get_submodules()
        since = (await self.event_log.state()).last_id
        await self.fetch_pending_hashes(submodules)
        # Include any pushes that arrived while the heads were being read.
        await self.queue.download_more_events()
        for event in await self.queue.events(since=since):
            submodule = self._submodule_for(event, submodules)
            if submodule is None:
                continue
            if event.before_hash == (submodule.pending_hash or submodule.current_hash):
                submodule.pending_hash = event.head_hash

        self.use_pending_hashes(submodules)
        result = await self.commit_hashes(submodules, mark_mirror_dirty=True)
        return result.committed

    async def _update_from_queue(self, *, check_all: bool = False) -> bool:
        await self.repo.setup_clean_checkout(
            self.settings.clone_url, self.settings.superproject_branch
        )
        submodules = await self.get_submodules()
        if check_all:
            await self.fetch_pending_hashes(submodules)
            await self.queue.download_more_events()

        if not await self.apply_queue_events(submodules):
            return False
        if not check_all:
            return True

        self.use_pending_hashes(submodules)
        result = await self.commit_hashes(submodules, mark_mirror_dirty=True)
        if not result.committed:
            return True
        return await self._push_once()

    async def _push_once(self) -> bool:
        if not self.push_enabled:
            self.push_warning = True
            return True
        pushed = await self.repo.push()
        if pushed.status is not PushStatus.OK:
            logger.error(
                "%s: error pushing to repo: %s", self.settings.label, pushed.stderr
            )
            return False
        return True

    def _submodule_for(
        self, event: ActivityEvent, submodules: Submodules
    ) -> Submodule | None:
        if event.branch != self.submodule_branch:
            return None
        return submodules.get(event.repo)

    async def apply_queue_events(self, submodules: Submodules) -> bool:
        """Apply unread push events in order, committing each clean one.

        Returns ``False`` when a push failed; no later events are processed
        and the queue stays at the last successfully pushed event.
        """
        completed = True
        for event in await self.queue.events():
            submodule = self._submodule_for(event, submodules)
            if submodule is None:
                continue
            if submodule.updated_hash is not None:
                raise ReconciliationConflictError.staged_update(
                    submodule.name, event.source_id
                )
            if not self._stage_event(submodule, event):
                continue

            result = await self.commit_hashes(submodules)
            if not result.committed:
                raise ReconciliationConflictError.not_committed(submodule.name)
            if not self.push_enabled:
                self.push_warning = True
                continue
            pushed = await self.repo.push()
            if pushed.status is not PushStatus.OK:
                logger.error(
                    "%s: error pushing to repo: %s",
                    self.settings.label,
                    pushed.stderr,
                )
                completed = False
                break
            await self.queue.mark_read_up_to(event.source_id)

        self._report_ignored(submodules)
        return completed

    @staticmethod
    def _stage_event(submodule: Submodule, event: ActivityEvent) -> bool:
        """Fold ``event`` into ``submodule`` and return whether it needs a commit."""
        before, head = event.before_hash, event.head_hash

        if submodule.current_hash == head:
            # Already applied, along with anything ignored before it.
            submodule.ignored_events.clear()
            return False

        if submodule.pending_hash is not None and submodule.pending_hash == before:
            submodule.ignored_events.clear()
            submodule.pending_hash = None if head == submodule.current_hash else head
            return False

        # TODO: an unchained push may mean the superproject has diverged;
        # consider triggering a full resync instead of only reporting it.
        if submodule.current_hash != before:
            submodule.ignored_events.append(event)
            return False

        if submodule.pending_hash == head:
            submodule.pending_hash = None
        submodule.updated_hash = head
        return True

    def _report_ignored(self, submodules: Submodules) -> None:
        for submodule in submodules.values():
            count = len(submodule.ignored_events)
            if not count:
                continue
            noun = "PushEvent" if count == 1 else "PushEvents"
            logger.warning(
                "Ignored %d %s for %s as the hash does not match the super "
                "project's current value",
                count,
                noun,
                submodule.name,
            )

    async def get_submodules(self) -> Submodules:
        """Read submodules and their current hashes, keyed by GitHub name."""
        submodules: Submodules = {}
        by_path: dict[str, Submodule] = {}
        config = await self.repo.read_submodule_config()
        for name, values in config.items():
            submodule = Submodule.from_config(
                name,
                values,
                organisation=self.organisation,
                prefixes=self.settings.name_prefixes,
            )
            if submodule is None:
                logger.debug(
                    "Skipping submodule %s outside %s", name, self.organisation
                )
                continue
            submodules[submodule.remote] = submodule
            by_path[submodule.path] = submodule

        hashes = await self.repo.current_hashes(list(by_path))
        for path, commit_hash in hashes.items():
            by_path[path].current_hash = commit_hash
        return submodules

    async def fetch_pending_hashes(self, submodules: Submodules) -> None:
        """Set ``pending_hash`` wherever GitHub's branch head differs."""
        for submodule in submodules.values():
            try:
                head = await self.github.branch_head(
                    submodule.remote, self.submodule_branch
                )
            except GitHubNotFoundError:
                logger.error(  # noqa: TRY400
                    "Unable to find %s for %s",
                    self.submodule_branch,
                    submodule.remote,
                )
                continue
            if head != submodule.current_hash:
                submodule.pending_hash = head

    @staticmethod
    def use_pending_hashes(submodules: Submodules) -> None:
        """Stage every pending hash for commit.

        Raises
        ------
        ReconciliationConflictError
            If a submodule already has a different update staged.

        """
        for submodule in submodules.values():
            if submodule.pending_hash is None:
                continue
            if submodule.updated_hash is not None:
                raise ReconciliationConflictError.pending_and_updated(submodule.name)
            submodule.updated_hash = submodule.pending_hash
            submodule.pending_hash = None

    async def commit_hashes(
        self, submodules: Submodules, *, mark_mirror_dirty: bool = False
    ) -> CommitResult:
        """Commit every staged hash that differs from the tree.

        With ``mark_mirror_dirty`` the updated submodules are also flagged for
        the mirror, since a full scan may have found pushes the event feed
        missed.
        """
        staged = [s for s in submodules.values() if s.needs_commit]
        for submodule in submodules.values():
            if submodule.updated_hash is not None and not submodule.needs_commit:
                submodule.updated_hash = None
        if not staged:
            return CommitResult(committed=False)

        updates = {s.path: typ.cast("str", s.updated_hash) for s in staged}
        names = tuple(s.label for s in staged)
        message = update_message(names, self.submodule_branch)
        logger.info(
            "Commit to %s: %s",
            self.settings.superproject_branch,
            message.partition("\n")[0],
        )
        await self.repo.commit(updates, message)

        for submodule in staged:
            submodule.current_hash = submodule.updated_hash
            submodule.updated_hash = None

        if mark_mirror_dirty and self.mirror is not None:
            for submodule in staged:
                url = github_clone_url(submodule.remote)
                logger.info("Schedule mirror fetch for: %s", url)
                await self.mirror.mark_dirty(url)

        return CommitResult(
            committed=True, names=names, message=message, updates=updates
        )


__all__ = [
    "DEFAULT_MAX_ATTEMPTS",
    "BranchHeadSource",
    "SuperProject",
    "SuperProjectRepository",
]
