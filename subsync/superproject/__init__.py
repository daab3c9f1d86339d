"""Superproject submodule reconciliation."""

from __future__ import annotations

from .config import (
    DEFAULT_NAME_PREFIXES,
    SuperProjectSettings,
    load_superprojects,
    select_branches,
)
from .errors import ReconciliationConflictError, SuperProjectConfigError
from .messages import update_message
from .models import CommitResult, Submodule
from .reconciler import (
    DEFAULT_MAX_ATTEMPTS,
    BranchHeadSource,
    SuperProject,
    SuperProjectRepository,
)

__all__ = [
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_NAME_PREFIXES",
    "BranchHeadSource",
    "CommitResult",
    "ReconciliationConflictError",
    "Submodule",
    "SuperProject",
    "SuperProjectConfigError",
    "SuperProjectRepository",
    "SuperProjectSettings",
    "load_superprojects",
    "select_branches",
    "update_message",
]
