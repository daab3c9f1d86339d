"""Unit tests for the git command line wrapper."""

from __future__ import annotations

import dataclasses
import subprocess
import typing as typ

import pytest

from subsync.git import (
    GitCommandError,
    GitIdentity,
    GitOutputError,
    GitRepository,
    GitTimeoutError,
    PushStatus,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

HASH_A = "a" * 40
HASH_B = "b" * 40


@dataclasses.dataclass(slots=True)
class ScriptedGit:
    """Captured git invocations with scripted replies keyed by subcommand."""

    calls: list[tuple[str, ...]] = dataclasses.field(default_factory=list)
    inputs: list[str | None] = dataclasses.field(default_factory=list)
    cwds: list[object] = dataclasses.field(default_factory=list)
    replies: dict[str, list[tuple[int, str, str]]] = dataclasses.field(
        default_factory=dict
    )

    def reply(
        self,
        subcommand: str,
        *,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Queue a reply for the next call of ``git <subcommand>``."""
        self.replies.setdefault(subcommand, []).append((returncode, stdout, stderr))

    def subcommands(self) -> list[str]:
        """Return the git subcommand of each captured call."""
        return [call[1] for call in self.calls]

    def __call__(
        self, args: list[str], **kwargs: object
    ) -> subprocess.CompletedProcess[str]:
        """Stand in for ``subprocess.run``."""
        self.calls.append(tuple(args))
        self.inputs.append(typ.cast("str | None", kwargs.get("input")))
        self.cwds.append(kwargs.get("cwd"))
        queued = self.replies.get(args[1], [])
        returncode, stdout, stderr = queued.pop(0) if queued else (0, "", "")
        return subprocess.CompletedProcess(
            args=args, returncode=returncode, stdout=stdout, stderr=stderr
        )


@pytest.fixture
def scripted_git(monkeypatch: pytest.MonkeyPatch) -> ScriptedGit:
    """Replace ``subprocess.run`` with a scripted git double."""
    fake = ScriptedGit()
    monkeypatch.setattr("subprocess.run", fake)
    return fake


@pytest.fixture
def repo(tmp_path: Path) -> GitRepository:
    """Return a wrapper bound to an existing working tree directory."""
    path = tmp_path / "boost"
    path.mkdir()
    return GitRepository(path, timeout_s=5, identity=GitIdentity("Bot", "bot@x"))


class TestCheckout:
    """Preparing a clean working tree."""

    @pytest.mark.asyncio
    async def test_missing_directory_is_shallow_cloned(
        self, scripted_git: ScriptedGit, tmp_path: Path
    ) -> None:
        """A new checkout clones only the branch tip."""
        target = tmp_path / "checkouts" / "boost"
        repo = GitRepository(target)

        await repo.setup_clean_checkout("git@github.com:boostorg/boost.git", "develop")

        assert scripted_git.calls[0] == (
            "git",
            "clone",
            "-q",
            "--depth",
            "1",
            "-b",
            "develop",
            "git@github.com:boostorg/boost.git",
            str(target),
        )
        assert scripted_git.cwds[0] == target.parent
        assert scripted_git.subcommands()[1:] == ["config", "config"]

    @pytest.mark.asyncio
    async def test_existing_directory_is_fetched_and_reset(
        self, scripted_git: ScriptedGit, repo: GitRepository
    ) -> None:
        """An existing checkout is fetched, hard reset and cleaned."""
        await repo.setup_clean_checkout("unused", "master")

        assert scripted_git.calls[:3] == [
            ("git", "fetch", "-p", "--quiet", "origin"),
            ("git", "reset", "-q", "--hard", "origin/master"),
            ("git", "clean", "-d", "-f"),
        ]
        assert scripted_git.calls[3:] == [
            ("git", "config", "user.email", "bot@x"),
            ("git", "config", "user.name", "Bot"),
        ]
        assert all(cwd == repo.path for cwd in scripted_git.cwds)

    @pytest.mark.asyncio
    async def test_full_checkout_keeps_history(
        self, scripted_git: ScriptedGit, tmp_path: Path
    ) -> None:
        """Full checkouts clone without depth and refetch without pruning."""
        repo = GitRepository(tmp_path / "full")

        await repo.setup_full_checkout("https://example.test/boost.git", "develop")
        repo.path.mkdir()
        await repo.setup_full_checkout("https://example.test/boost.git", "develop")

        assert scripted_git.calls[0] == (
            "git",
            "clone",
            "-b",
            "develop",
            "https://example.test/boost.git",
            str(repo.path),
        )
        assert scripted_git.subcommands() == [
            "clone",
            "config",
            "config",
            "fetch",
            "reset",
            "clean",
            "config",
            "config",
        ]
        assert ("git", "fetch", "origin") in scripted_git.calls

    @pytest.mark.asyncio
    async def test_stale_refs_are_pruned_before_refetching(
        self, scripted_git: ScriptedGit, repo: GitRepository
    ) -> None:
        """A fetch refused over stale refs is retried after pruning."""
        scripted_git.reply(
            "fetch",
            returncode=1,
            stderr="error: some local refs could not be updated; try running\n"
            " 'git remote prune origin' to remove any old, conflicting branches",
        )

        await repo.fetch_prune()

        assert scripted_git.calls == [
            ("git", "fetch", "-p", "--quiet", "origin"),
            ("git", "remote", "prune", "origin"),
            ("git", "fetch", "-p", "--quiet", "origin"),
        ]

    @pytest.mark.asyncio
    async def test_other_fetch_failures_propagate(
        self, scripted_git: ScriptedGit, repo: GitRepository
    ) -> None:
        """Unrelated fetch errors are raised with the captured stderr."""
        scripted_git.reply("fetch", returncode=128, stderr="fatal: no route")

        with pytest.raises(GitCommandError) as excinfo:
            await repo.fetch_prune()

        assert excinfo.value.returncode == 128
        assert "no route" in excinfo.value.stderr
        assert scripted_git.subcommands() == ["fetch"]

    @pytest.mark.asyncio
    async def test_timeout_surfaces_as_git_timeout_error(
        self, monkeypatch: pytest.MonkeyPatch, repo: GitRepository
    ) -> None:
        """An expired command timeout aborts just that command."""

        def _slow(args: list[str], **kwargs: object) -> typ.NoReturn:
            raise subprocess.TimeoutExpired(args, typ.cast("float", kwargs["timeout"]))

        monkeypatch.setattr("subprocess.run", _slow)

        with pytest.raises(GitTimeoutError) as excinfo:
            await repo.fetch()

        assert excinfo.value.timeout_s == 5
        assert excinfo.value.command == ("git", "fetch", "origin")


class TestCommitAndPush:
    """Writing submodule pointers and publishing them."""

    @pytest.mark.asyncio
    async def test_commit_updates_index_then_commits_message(
        self, scripted_git: ScriptedGit, repo: GitRepository
    ) -> None:
        """Gitlinks are written through the index without a checkout."""
        await repo.commit(
            {"libs/config": HASH_A, "tools/build": HASH_B}, "Update build, config"
        )

        assert scripted_git.calls == [
            ("git", "update-index", "--index-info"),
            ("git", "commit", "-F", "-"),
        ]
        assert scripted_git.inputs == [
            f"160000 {HASH_A}\tlibs/config\n160000 {HASH_B}\ttools/build\n",
            "Update build, config",
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("returncode", "expected"),
        [(0, PushStatus.OK), (1, PushStatus.REJECTED), (128, PushStatus.ERROR)],
    )
    async def test_push_exit_status_is_classified(
        self,
        scripted_git: ScriptedGit,
        repo: GitRepository,
        returncode: int,
        expected: PushStatus,
    ) -> None:
        """Exit 1 means rejected; anything else non-zero is an error."""
        scripted_git.reply("push", returncode=returncode, stderr=" details \n")

        result = await repo.push()

        assert result.status is expected
        assert result.ok is (expected is PushStatus.OK)
        assert result.stderr == "details"
        assert scripted_git.calls == [("git", "push", "-q", "--porcelain")]


class TestSubmoduleQueries:
    """Reading ``.gitmodules`` and gitlink entries."""

    @pytest.mark.asyncio
    async def test_submodule_config_is_grouped_by_name(
        self, scripted_git: ScriptedGit, repo: GitRepository
    ) -> None:
        """Settings are grouped per submodule, keeping names with slashes."""
        scripted_git.reply(
            "config",
            stdout=(
                "submodule.libs/config.path=libs/config\n"
                "submodule.libs/config.url=../config.git\n"
                "submodule.tools/build.path=tools/build\n"
                "submodule.tools/build.url=../build.git\n"
                "submodule.tools/build.branch=.\n"
            ),
        )

        config = await repo.read_submodule_config()

        assert config == {
            "libs/config": {"path": "libs/config", "url": "../config.git"},
            "tools/build": {
                "path": "tools/build",
                "url": "../build.git",
                "branch": ".",
            },
        }
        assert scripted_git.calls == [("git", "config", "-f", ".gitmodules", "-l")]

    @pytest.mark.asyncio
    async def test_unparseable_submodule_setting_raises(
        self, scripted_git: ScriptedGit, repo: GitRepository
    ) -> None:
        """Lines outside the ``submodule.`` namespace are rejected."""
        scripted_git.reply("config", stdout="core.bare=false\n")

        with pytest.raises(GitOutputError):
            await repo.read_submodule_config()

    @pytest.mark.asyncio
    async def test_current_hashes_reads_gitlinks(
        self, scripted_git: ScriptedGit, repo: GitRepository
    ) -> None:
        """Each requested path maps to the commit the tree records."""
        scripted_git.reply(
            "ls-tree",
            stdout=(
                f"160000 commit {HASH_A}\tlibs/config\n"
                f"160000 commit {HASH_B}\ttools/build\n"
            ),
        )

        hashes = await repo.current_hashes(["libs/config", "tools/build"])

        assert hashes == {"libs/config": HASH_A, "tools/build": HASH_B}
        assert scripted_git.calls == [
            ("git", "ls-tree", "HEAD", "--", "libs/config", "tools/build")
        ]

    @pytest.mark.asyncio
    async def test_current_hashes_without_paths_runs_nothing(
        self, scripted_git: ScriptedGit, repo: GitRepository
    ) -> None:
        """An empty request never lists the whole tree."""
        assert await repo.current_hashes([]) == {}
        assert scripted_git.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "line",
        [
            f"100644 blob {HASH_A}\tlibs/config",
            f"160000 commit {HASH_A}\tlibs/other",
        ],
        ids=["not-a-gitlink", "unrequested-path"],
    )
    async def test_current_hashes_rejects_unexpected_entries(
        self, scripted_git: ScriptedGit, repo: GitRepository, line: str
    ) -> None:
        """Only gitlinks for the requested paths are accepted."""
        scripted_git.reply("ls-tree", stdout=f"{line}\n")

        with pytest.raises(GitOutputError):
            await repo.current_hashes(["libs/config"])
