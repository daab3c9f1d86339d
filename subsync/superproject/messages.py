"""Commit messages for submodule updates."""

from __future__ import annotations

import re
import textwrap
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

SUMMARY_LIMIT = 50
BODY_WIDTH = 72

_DIGITS = re.compile(r"(\d+)")


def natural_key(name: str) -> list[str | int]:
    """Sort key that orders names case-insensitively with numbers by value."""
    return [
        int(part) if part.isdigit() else part
        for part in _DIGITS.split(name.casefold())
    ]


def update_message(names: cabc.Iterable[str], branch: str) -> str:
    """Return the commit message for updating ``names`` from ``branch``.

    The names go in the summary line when it stays within 50 characters.
    Otherwise the summary only counts the submodules and the names move to a
    body wrapped at 72 columns.
    """
    ordered = sorted(names, key=natural_key)
    update = f"Update {', '.join(ordered)}"
    message = f"{update} from {branch}"
    if len(message) <= SUMMARY_LIMIT:
        return message

    noun = "submodule" if len(ordered) == 1 else "submodules"
    body = textwrap.fill(
        f"{update}.",
        width=BODY_WIDTH,
        break_long_words=False,
        break_on_hyphens=False,
    )
    return f"Update {len(ordered)} {noun} from {branch}\n\n{body}\n"


__all__ = ["natural_key", "update_message"]
