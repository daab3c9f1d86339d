"""Superproject settings loaded from YAML.

Example file::

    superprojects:
      - module: boostorg/boost
        superproject-branch: develop
        submodule-branch: develop
        path: /var/lib/subsync/boost-develop

"""

from __future__ import annotations

from pathlib import Path

import msgspec
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .errors import SuperProjectConfigError

YAML_VERSION = (1, 2)
DEFAULT_NAME_PREFIXES = ("libs/", "tools/")


class SuperProjectSettings(msgspec.Struct, kw_only=True, rename="kebab"):
    """Settings for one superproject checkout and branch.

    Attributes
    ----------
    module : str
        GitHub ``owner/name`` of the superproject repository.
    superproject_branch : str
        Branch of the superproject that receives the update commits.
    submodule_branch : str
        Branch of each submodule whose pushes are followed.
    path : str
        Local working tree used for commits.
    remote_url : str, optional
        Clone and push URL; defaults to the SSH URL of ``module``.
    name_prefixes : list[str]
        Prefixes stripped from submodule names in commit messages.

    """

    module: str
    superproject_branch: str
    submodule_branch: str
    path: str
    remote_url: str | None = None
    name_prefixes: list[str] = msgspec.field(
        default_factory=lambda: list(DEFAULT_NAME_PREFIXES)
    )

    def __post_init__(self) -> None:
        """Reject blank required values."""
        for field in ("module", "superproject_branch", "submodule_branch", "path"):
            if not getattr(self, field).strip():
                msg = f"{field.replace('_', '-')} must not be empty"
                raise ValueError(msg)

    @property
    def clone_url(self) -> str:
        """Return the URL the superproject is cloned from and pushed to."""
        return self.remote_url or f"git@github.com:{self.module}.git"

    @property
    def queue_name(self) -> str:
        """Return the event queue name reserved for this superproject branch."""
        return f"{self.module}:{self.superproject_branch}"

    @property
    def label(self) -> str:
        """Return a human readable name for log messages."""
        return f"{self.module}, branch {self.superproject_branch}"


class SuperProjectsFile(msgspec.Struct, kw_only=True):
    """Top-level layout of the settings file."""

    superprojects: list[SuperProjectSettings]


def load_superprojects(path: Path | str) -> list[SuperProjectSettings]:
    """Parse the superproject settings file with a YAML 1.2 loader."""
    path_obj = Path(path)
    try:
        loaded = _yaml().load(path_obj.read_text(encoding="utf-8"))
    except (OSError, YAMLError) as exc:
        raise SuperProjectConfigError.unreadable(path_obj, exc) from exc

    if loaded is None:
        raise SuperProjectConfigError.empty(path_obj)

    try:
        settings = msgspec.convert(loaded, type=SuperProjectsFile)
    except msgspec.ValidationError as exc:
        raise SuperProjectConfigError.invalid(path_obj, exc) from exc

    return settings.superprojects


def select_branches(
    settings: list[SuperProjectSettings], branches: list[str] | None
) -> list[SuperProjectSettings]:
    """Return the settings for ``branches``, or all of them when unset."""
    if not branches:
        return settings
    selected = []
    for branch in branches:
        matches = [s for s in settings if s.superproject_branch == branch]
        if not matches:
            raise SuperProjectConfigError.unknown_branch(branch)
        selected.extend(matches)
    return selected


def _yaml() -> YAML:
    yaml = YAML(typ="safe")
    yaml.version = YAML_VERSION
    yaml.allow_duplicate_keys = False
    return yaml


__all__ = [
    "DEFAULT_NAME_PREFIXES",
    "SuperProjectSettings",
    "SuperProjectsFile",
    "load_superprojects",
    "select_branches",
]
