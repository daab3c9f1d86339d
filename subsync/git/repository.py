"""Async wrapper around the git command line for a single working tree.

Each command is a blocking ``subprocess.run`` call executed on a worker thread
with its own wall-clock timeout. A timeout aborts only that command and
surfaces as :class:`GitTimeoutError`.
"""

from __future__ import annotations

import asyncio
import collections.abc as cabc
import dataclasses
import enum
import logging
import re
import subprocess
import typing as typ
from pathlib import Path

from .errors import GitCommandError, GitOutputError, GitTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 240.0
GITLINK_MODE = "160000"

_STALE_REFS = re.compile(
    r"some local refs could not be updated.*git remote prune",
    re.IGNORECASE | re.DOTALL,
)
_SUBMODULE_SETTING = re.compile(
    r"^submodule\.(?P<submodule>[\w/.-]+)\.(?P<name>\w+)=(?P<value>.*)$"
)
_GITLINK_ENTRY = re.compile(
    r"^160000 commit (?P<hash>[a-zA-Z0-9]{40})\t(?P<path>.*)$"
)


class PushStatus(enum.StrEnum):
    """Outcome of ``git push``."""

    OK = "ok"
    REJECTED = "rejected"
    ERROR = "error"


@dataclasses.dataclass(frozen=True, slots=True)
class PushResult:
    """Push outcome with the stderr git reported."""

    status: PushStatus
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """Return whether the push was accepted."""
        return self.status is PushStatus.OK


@dataclasses.dataclass(frozen=True, slots=True)
class GitIdentity:
    """Author identity configured on checkouts before committing."""

    name: str = "Automated Commit"
    email: str = "automated@localhost"


class GitRepository:
    """Git operations against the working tree at ``path``."""

    def __init__(
        self,
        path: Path | str,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        identity: GitIdentity | None = None,
    ) -> None:
        """Bind to ``path``; the directory need not exist until cloned."""
        self.path = Path(path)
        self.timeout_s = timeout_s
        self.identity = identity or GitIdentity()

    def _run(
        self,
        args: cabc.Sequence[str],
        *,
        stdin: str | None = None,
        cwd: Path | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = ["git", *args]
        logger.debug("Running %s in %s", " ".join(command), cwd or self.path)
        try:
            result = subprocess.run(  # noqa: S603
                command,
                cwd=cwd or self.path,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise GitTimeoutError(command, self.timeout_s) from exc
        if check and result.returncode != 0:
            raise GitCommandError(command, result.returncode, result.stderr or "")
        return result

    async def _git(
        self,
        *args: str,
        stdin: str | None = None,
        cwd: Path | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        return await asyncio.to_thread(
            self._run, args, stdin=stdin, cwd=cwd, check=check
        )

    async def _lines(self, *args: str) -> list[str]:
        result = await self._git(*args)
        return [line for line in (result.stdout or "").splitlines() if line]

    async def clone_shallow(self, url: str, ref: str) -> None:
        """Clone only the tip of ``ref``; the history is never used."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        await self._git(
            "clone",
            "-q",
            "--depth",
            "1",
            "-b",
            ref,
            url,
            str(self.path),
            cwd=self.path.parent,
        )

    async def clone_full(self, url: str, ref: str) -> None:
        """Clone the whole history with ``ref`` checked out."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        await self._git("clone", "-b", ref, url, str(self.path), cwd=self.path.parent)

    async def fetch_prune(self, remote: str = "origin") -> None:
        """Fetch and prune ``remote``, recovering once from stale local refs.

        Older git versions refuse to fetch when a remote branch was replaced
        by one with a conflicting name; pruning first lets the fetch succeed.
        """
        try:
            await self._git("fetch", "-p", "--quiet", remote)
        except GitCommandError as exc:
            if not _STALE_REFS.search(exc.stderr):
                raise
            logger.warning("git fetch failed in %s, pruning %s", self.path, remote)
            await self._git("remote", "prune", remote)
            await self._git("fetch", "-p", "--quiet", remote)

    async def fetch(self, remote: str = "origin") -> None:
        """Fetch ``remote`` without pruning."""
        await self._git("fetch", remote)

    async def reset_hard(self, ref: str) -> None:
        """Point the checkout and index at ``ref``."""
        await self._git("reset", "-q", "--hard", ref)

    async def clean(self) -> None:
        """Remove untracked files and directories."""
        await self._git("clean", "-d", "-f")

    async def configure_identity(self) -> None:
        """Set the commit author for this checkout."""
        await self._git("config", "user.email", self.identity.email)
        await self._git("config", "user.name", self.identity.name)

    async def setup_clean_checkout(self, url: str, branch: str) -> None:
        """Shallow-clone, or fetch and hard reset, to the tip of ``branch``."""
        if not self.path.is_dir():
            logger.info("Clone %s, branch %s", url, branch)
            await self.clone_shallow(url, branch)
        else:
            logger.info("Fetch %s, branch %s", url, branch)
            await self.fetch_prune("origin")
            await self.reset_hard(f"origin/{branch}")
            await self.clean()
        await self.configure_identity()

    async def setup_full_checkout(self, url: str, branch: str) -> None:
        """Like :meth:`setup_clean_checkout` but keeping full history."""
        if not self.path.is_dir():
            logger.info("Clone %s, branch %s (full history)", url, branch)
            await self.clone_full(url, branch)
        else:
            logger.info("Fetch %s, branch %s (full history)", url, branch)
            await self.fetch("origin")
            await self.reset_hard(f"origin/{branch}")
            await self.clean()
        await self.configure_identity()

    async def commit(self, tree_updates: cabc.Mapping[str, str], message: str) -> None:
        """Point each submodule path at a new commit and commit the result.

        ``tree_updates`` maps submodule paths to commit hashes. The index is
        updated directly, so the submodules never need to be checked out.
        """
        index_info = "".join(
            f"{GITLINK_MODE} {commit_hash}\t{path}\n"
            for path, commit_hash in tree_updates.items()
        )
        await self._git("update-index", "--index-info", stdin=index_info)
        await self._git("commit", "-F", "-", stdin=message)

    async def push(self) -> PushResult:
        """Push the current branch and classify the exit status."""
        result = await self._git("push", "-q", "--porcelain", check=False)
        stderr = (result.stderr or "").strip()
        if result.returncode == 0:
            return PushResult(PushStatus.OK, stderr)
        if result.returncode == 1:
            logger.warning("Push rejected from %s: %s", self.path, stderr)
            return PushResult(PushStatus.REJECTED, stderr)
        logger.error(
            "Push failed from %s with status %d: %s",
            self.path,
            result.returncode,
            stderr,
        )
        return PushResult(PushStatus.ERROR, stderr)

    async def read_submodule_config(self) -> dict[str, dict[str, str]]:
        """Return the ``.gitmodules`` settings grouped by submodule name."""
        config: dict[str, dict[str, str]] = {}
        for line in await self._lines("config", "-f", ".gitmodules", "-l"):
            match = _SUBMODULE_SETTING.match(line)
            if match is None:
                raise GitOutputError.unparseable("submodule setting", line)
            config.setdefault(match.group("submodule"), {})[match.group("name")] = (
                match.group("value")
            )
        return config

    async def current_hashes(
        self, paths: cabc.Sequence[str], ref: str = "HEAD"
    ) -> dict[str, str]:
        """Return the commit each submodule path points at in ``ref``."""
        if not paths:
            return {}
        hashes: dict[str, str] = {}
        wanted = set(paths)
        for line in await self._lines("ls-tree", ref, "--", *paths):
            match = _GITLINK_ENTRY.match(line)
            if match is None:
                raise GitOutputError.unparseable("submodule entry", line)
            path = match.group("path")
            if path not in wanted:
                raise GitOutputError.unexpected_path(path)
            hashes[path] = match.group("hash")
        return hashes


__all__ = [
    "DEFAULT_TIMEOUT_S",
    "GitIdentity",
    "GitRepository",
    "PushResult",
    "PushStatus",
]
