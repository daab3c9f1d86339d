"""Errors raised while reconciling superproject submodules."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from pathlib import Path


class ReconciliationConflictError(RuntimeError):
    """Raised when submodule state cannot be reconciled without guessing.

    This signals a defect in the event log or in the reconciler itself and is
    never resolved automatically.
    """

    def __init__(self, message: str, *, submodule: str) -> None:
        """Record the submodule the conflict was found in."""
        self.submodule = submodule
        super().__init__(message)

    @classmethod
    def staged_update(
        cls, submodule: str, source_id: int
    ) -> ReconciliationConflictError:
        """Return an error for an event arriving while an update is staged."""
        return cls(
            f"Event {source_id} for {submodule} arrived with an uncommitted update",
            submodule=submodule,
        )

    @classmethod
    def pending_and_updated(cls, submodule: str) -> ReconciliationConflictError:
        """Return an error for a submodule with both pending and staged hashes."""
        return cls(
            f"Update for {submodule} doesn't match event queue",
            submodule=submodule,
        )

    @classmethod
    def not_committed(cls, submodule: str) -> ReconciliationConflictError:
        """Return an error when a staged update produced no commit."""
        return cls(
            f"Error updating {submodule} in the superproject",
            submodule=submodule,
        )


class SuperProjectConfigError(ValueError):
    """Raised when the superproject settings file is missing or invalid."""

    @classmethod
    def unreadable(cls, path: Path, detail: object) -> SuperProjectConfigError:
        """Return an error for a file that could not be read or parsed."""
        return cls(f"failed to parse superproject settings {path}: {detail}")

    @classmethod
    def empty(cls, path: Path) -> SuperProjectConfigError:
        """Return an error for a file with no content."""
        return cls(f"superproject settings file {path} is empty")

    @classmethod
    def invalid(cls, path: Path, detail: object) -> SuperProjectConfigError:
        """Return an error for settings that fail schema validation."""
        return cls(f"invalid superproject settings in {path}: {detail}")

    @classmethod
    def unknown_branch(cls, branch: str) -> SuperProjectConfigError:
        """Return an error when no configured superproject uses ``branch``."""
        return cls(f"no superproject is configured for branch {branch!r}")


__all__ = ["ReconciliationConflictError", "SuperProjectConfigError"]
