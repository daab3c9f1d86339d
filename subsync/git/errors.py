"""Errors raised by git command execution."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc


class GitError(RuntimeError):
    """Base class for git command failures."""


class GitCommandError(GitError):
    """Raised when a git command exits with a non-zero status."""

    def __init__(
        self, args: cabc.Sequence[str], returncode: int, stderr: str = ""
    ) -> None:
        """Record the command line, exit status and captured stderr."""
        self.command = tuple(args)
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or "no output"
        super().__init__(
            f"`{' '.join(self.command)}` exited with status {returncode}: {detail}"
        )


class GitTimeoutError(GitError):
    """Raised when a git command exceeds its wall-clock timeout."""

    def __init__(self, args: cabc.Sequence[str], timeout_s: float) -> None:
        """Record the command line and the timeout that expired."""
        self.command = tuple(args)
        self.timeout_s = timeout_s
        super().__init__(
            f"`{' '.join(self.command)}` timed out after {timeout_s:g} seconds"
        )


class GitOutputError(GitError):
    """Raised when git output cannot be parsed."""

    @classmethod
    def unparseable(cls, what: str, line: str) -> GitOutputError:
        """Return an error for a line that does not match the expected format."""
        return cls(f"Unable to parse {what}: {line!r}")

    @classmethod
    def unexpected_path(cls, path: str) -> GitOutputError:
        """Return an error for a tree entry that was not requested."""
        return cls(f"Unexpected path in git ls-tree output: {path!r}")


__all__ = ["GitCommandError", "GitError", "GitOutputError", "GitTimeoutError"]
