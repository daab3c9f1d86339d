"""Process configuration read from ``SUBSYNC_*`` environment variables.

Usage
-----
>>> import os
>>> os.environ["SUBSYNC_PUSH_ATTEMPTS"] = "3"
>>> SyncConfig.from_env().push_attempts
3

"""

from __future__ import annotations

import dataclasses as dc
import os
from pathlib import Path

from subsync.git.repository import DEFAULT_TIMEOUT_S, GitIdentity
from subsync.superproject.models import DEFAULT_ORGANISATION

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///subsync.db"
DEFAULT_SUPERPROJECTS_PATH = Path("superprojects.yaml")

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


class ConfigError(ValueError):
    """Raised when an environment variable holds an unusable value."""

    @classmethod
    def not_a_number(cls, env_var: str, raw: str) -> ConfigError:
        """Return an error for a value that does not parse as a number."""
        return cls(f"{env_var} must be a number, got: {raw!r}")

    @classmethod
    def not_positive(cls, env_var: str, value: float) -> ConfigError:
        """Return an error for a value below one."""
        return cls(f"{env_var} must be positive, got: {value}")

    @classmethod
    def not_a_flag(cls, env_var: str, raw: str) -> ConfigError:
        """Return an error for a value that is not a recognised boolean."""
        return cls(f"{env_var} must be true or false, got: {raw!r}")


def _env(env_var: str) -> str:
    return os.environ.get(env_var, "").strip()


def _parse_positive_int(env_var: str, default: int) -> int:
    raw = _env(env_var)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError.not_a_number(env_var, raw) from exc
    if value < 1:
        raise ConfigError.not_positive(env_var, value)
    return value


def _parse_positive_float(env_var: str, default: float) -> float:
    raw = _env(env_var)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError.not_a_number(env_var, raw) from exc
    if value <= 0:
        raise ConfigError.not_positive(env_var, value)
    return value


def _parse_flag(env_var: str, *, default: bool) -> bool:
    raw = _env(env_var).lower()
    if not raw:
        return default
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ConfigError.not_a_flag(env_var, raw)


@dc.dataclass(frozen=True, slots=True)
class SyncConfig:
    """Settings shared by every subsync command.

    Attributes
    ----------
    database_url
        SQLAlchemy async URL for the event log, queues and caches.
    github_org
        Organisation whose activity feed is followed and whose repositories
        count as submodule remotes.
    push_to_repo
        Whether reconciliation commits are pushed. Off by default so a new
        deployment can be checked before it writes anywhere.
    push_attempts
        Checkout, rebuild and push cycles tried before giving up on a
        rejected push.
    git_timeout_s
        Wall-clock limit for each git command.
    superprojects_path
        YAML file listing the superprojects to keep in sync.
    git_identity
        Author of reconciliation commits.

    """

    database_url: str = DEFAULT_DATABASE_URL
    github_org: str = DEFAULT_ORGANISATION
    push_to_repo: bool = False
    push_attempts: int = 2
    git_timeout_s: float = DEFAULT_TIMEOUT_S
    superprojects_path: Path = DEFAULT_SUPERPROJECTS_PATH
    git_identity: GitIdentity = dc.field(default_factory=GitIdentity)

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Create configuration from environment variables.

        Reads ``SUBSYNC_DATABASE_URL``, ``SUBSYNC_GITHUB_ORG``,
        ``SUBSYNC_PUSH_TO_REPO``, ``SUBSYNC_PUSH_ATTEMPTS``,
        ``SUBSYNC_GIT_TIMEOUT``, ``SUBSYNC_SUPERPROJECTS``,
        ``SUBSYNC_GIT_USER_NAME`` and ``SUBSYNC_GIT_USER_EMAIL``. Unset or
        blank variables keep their defaults. ``SUBSYNC_LOG_LEVEL`` is read by
        the command line entry point before any configuration is loaded.

        Raises
        ------
        ConfigError
            If a numeric or boolean variable cannot be parsed.

        """
        identity = GitIdentity()
        identity = GitIdentity(
            name=_env("SUBSYNC_GIT_USER_NAME") or identity.name,
            email=_env("SUBSYNC_GIT_USER_EMAIL") or identity.email,
        )
        superprojects = _env("SUBSYNC_SUPERPROJECTS")
        return cls(
            database_url=_env("SUBSYNC_DATABASE_URL") or DEFAULT_DATABASE_URL,
            github_org=_env("SUBSYNC_GITHUB_ORG") or DEFAULT_ORGANISATION,
            push_to_repo=_parse_flag("SUBSYNC_PUSH_TO_REPO", default=False),
            push_attempts=_parse_positive_int("SUBSYNC_PUSH_ATTEMPTS", 2),
            git_timeout_s=_parse_positive_float(
                "SUBSYNC_GIT_TIMEOUT", DEFAULT_TIMEOUT_S
            ),
            superprojects_path=(
                Path(superprojects) if superprojects else DEFAULT_SUPERPROJECTS_PATH
            ),
            git_identity=identity,
        )


__all__ = ["DEFAULT_DATABASE_URL", "ConfigError", "SyncConfig"]
