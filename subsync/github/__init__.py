"""Cached GitHub REST access and the organisation activity feed."""

from __future__ import annotations

from .client import (
    DEFAULT_BASE_URL,
    CachedPage,
    GitHubCache,
    GitHubConfig,
    GitHubEventFeed,
)
from .errors import (
    GitHubConfigError,
    GitHubFetchError,
    GitHubNotFoundError,
    GitHubUnexpectedResponseError,
)
from .storage import GitHubCacheEntry, init_github_storage

__all__ = [
    "DEFAULT_BASE_URL",
    "CachedPage",
    "GitHubCache",
    "GitHubCacheEntry",
    "GitHubConfig",
    "GitHubConfigError",
    "GitHubEventFeed",
    "GitHubFetchError",
    "GitHubNotFoundError",
    "GitHubUnexpectedResponseError",
    "init_github_storage",
]
