"""Per-pass submodule state."""

from __future__ import annotations

import dataclasses
import re
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from subsync.events.models import ActivityEvent

DEFAULT_ORGANISATION = "boostorg"


def remote_pattern(organisation: str) -> re.Pattern[str]:
    """Match submodule URLs that point at a repository of ``organisation``.

    Relative URLs (``../name.git``) are taken to be siblings within the same
    organisation.
    """
    return re.compile(
        rf"^(?:\.\.|https?://github\.com/{re.escape(organisation)})"
        r"/(?P<name>[\w.-]+?)(?:\.git)?$"
    )


def display_name(name: str, prefixes: cabc.Iterable[str]) -> str:
    """Strip the first matching prefix from a submodule name."""
    for prefix in prefixes:
        if prefix and name.startswith(prefix):
            return name[len(prefix) :]
    return name


@dataclasses.dataclass(slots=True)
class Submodule:
    """One submodule of the superproject, rebuilt for every pass.

    Attributes
    ----------
    name : str
        Name of the submodule in ``.gitmodules``.
    path : str
        Path of the submodule inside the superproject tree.
    remote : str
        GitHub ``owner/name`` the submodule tracks.
    label : str
        Name used in commit messages.
    current_hash : str | None
        Commit the superproject tree points at.
    pending_hash : str | None
        Upstream head expected to be applied once its push is seen.
    updated_hash : str | None
        Commit staged for the next superproject commit.
    ignored_events : list[ActivityEvent]
        Events that did not chain from the known state this pass.

    """

    name: str
    path: str
    remote: str
    label: str
    current_hash: str | None = None
    pending_hash: str | None = None
    updated_hash: str | None = None
    ignored_events: list[ActivityEvent] = dataclasses.field(default_factory=list)

    @classmethod
    def from_config(
        cls,
        name: str,
        values: cabc.Mapping[str, str],
        *,
        organisation: str = DEFAULT_ORGANISATION,
        prefixes: cabc.Iterable[str] = (),
    ) -> Submodule | None:
        """Build a submodule from its ``.gitmodules`` settings.

        Returns ``None`` when the submodule lacks a path or its URL does not
        resolve to a repository of ``organisation``.
        """
        path = values.get("path")
        url = values.get("url", "")
        match = remote_pattern(organisation).match(url)
        if not path or match is None:
            return None
        return cls(
            name=name,
            path=path,
            remote=f"{organisation}/{match.group('name')}",
            label=display_name(name, prefixes),
        )

    @property
    def needs_commit(self) -> bool:
        """Return whether a staged hash differs from the tree."""
        return (
            self.updated_hash is not None and self.updated_hash != self.current_hash
        )


@dataclasses.dataclass(frozen=True, slots=True)
class CommitResult:
    """Outcome of committing staged submodule hashes."""

    committed: bool
    names: tuple[str, ...] = ()
    message: str | None = None
    updates: cabc.Mapping[str, str] = dataclasses.field(default_factory=dict)


__all__ = [
    "DEFAULT_ORGANISATION",
    "CommitResult",
    "Submodule",
    "display_name",
    "remote_pattern",
]
