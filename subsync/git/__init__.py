"""Git command line operations used by the reconciler."""

from __future__ import annotations

from .errors import GitCommandError, GitError, GitOutputError, GitTimeoutError
from .repository import (
    DEFAULT_TIMEOUT_S,
    GitIdentity,
    GitRepository,
    PushResult,
    PushStatus,
)

__all__ = [
    "DEFAULT_TIMEOUT_S",
    "GitCommandError",
    "GitError",
    "GitIdentity",
    "GitOutputError",
    "GitRepository",
    "GitTimeoutError",
    "PushResult",
    "PushStatus",
]
