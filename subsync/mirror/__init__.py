"""Dirty-flag bookkeeping for the local repository mirror."""

from __future__ import annotations

from .registry import (
    MIRROR_QUEUE_NAME,
    MirrorEntry,
    MirrorRegistry,
    RepositorySource,
    github_clone_url,
    mirror_path,
)
from .storage import MirrorEntryRecord, init_mirror_storage

__all__ = [
    "MIRROR_QUEUE_NAME",
    "MirrorEntry",
    "MirrorEntryRecord",
    "MirrorRegistry",
    "RepositorySource",
    "github_clone_url",
    "init_mirror_storage",
    "mirror_path",
]
