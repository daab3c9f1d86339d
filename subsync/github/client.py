"""Conditional-fetch client for the GitHub REST API.

Every successful response that carries an ``ETag`` is stored against its full
URL. Later requests for the same URL send ``If-None-Match`` and reuse the
stored body when GitHub answers ``304 Not Modified``, which keeps frequent
polling of the events feed cheap against the rate limit.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses
import logging
import os
import typing as typ

import httpx
import msgspec
from sqlalchemy import select

from .errors import (
    GitHubConfigError,
    GitHubFetchError,
    GitHubUnexpectedResponseError,
)
from .storage import GitHubCacheEntry

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    SessionFactory: typ.TypeAlias = async_sessionmaker[AsyncSession]

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.github.com"

_HTTP_OK = 200
_HTTP_NOT_MODIFIED = 304
_HTTP_REDIRECT_RANGE = range(300, 400)
_HTTP_ERROR_STATUS_THRESHOLD = 400


@dataclasses.dataclass(frozen=True, slots=True)
class GitHubConfig:
    """Configuration for the GitHub REST client."""

    base_url: str = DEFAULT_BASE_URL
    token: str | None = None
    timeout_s: float = 20.0
    user_agent: str = "subsync/0.1"

    @classmethod
    def from_env(cls) -> GitHubConfig:
        """Build configuration from ``SUBSYNC_GITHUB_*`` environment variables.

        ``SUBSYNC_GITHUB_TOKEN`` is optional; unauthenticated requests work
        against public organisations at a lower rate limit.
        """
        token = os.environ.get("SUBSYNC_GITHUB_TOKEN", "").strip() or None
        base_url = os.environ.get("SUBSYNC_GITHUB_URL", "").strip()
        return cls(base_url=base_url or DEFAULT_BASE_URL, token=token)


@dataclasses.dataclass(frozen=True, slots=True)
class CachedPage:
    """Body of a fetched page and the link to the page after it."""

    url: str
    body: str
    next_url: str | None
    from_cache: bool = False

    def json(self) -> typ.Any:  # noqa: ANN401
        """Decode the page body as JSON.

        Raises
        ------
        GitHubUnexpectedResponseError
            If the body is not valid JSON.

        """
        try:
            return msgspec.json.decode(self.body)
        except msgspec.DecodeError as exc:
            raise GitHubUnexpectedResponseError.invalid_json(self.url) from exc


class _GitObject(msgspec.Struct):
    sha: str


class _GitRef(msgspec.Struct):
    """Subset of ``GET /repos/{repo}/git/refs/heads/{branch}``."""

    object: _GitObject


class GitHubCache:
    """ETag-revalidating GitHub client with lazy pagination."""

    def __init__(
        self,
        session_factory: SessionFactory,
        config: GitHubConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client; an HTTP client is created when not supplied."""
        resolved = config or GitHubConfig()
        if resolved.token is not None and not resolved.token.strip():
            raise GitHubConfigError.empty_token()

        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": resolved.user_agent,
        }
        if resolved.token:
            headers["Authorization"] = f"Bearer {resolved.token}"

        self._session_factory = session_factory
        self._config = resolved
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=resolved.timeout_s,
            headers=headers,
        )

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    def full_url(self, url: str) -> str:
        """Resolve an API path against the configured base URL."""
        if url.startswith(("http://", "https://")):
            return url
        return f"{self._config.base_url.rstrip('/')}/{url.lstrip('/')}"

    async def get(self, url: str) -> CachedPage:
        """Fetch ``url``, revalidating any stored copy with its ETag.

        Raises
        ------
        GitHubNotFoundError
            If GitHub answers 404.
        GitHubFetchError
            For any other 4xx or 5xx answer, or when no response arrives.
        GitHubUnexpectedResponseError
            For redirects, or a 304 when nothing is cached.

        """
        full_url = self.full_url(url)
        etag, cached = await self._load_cached(full_url)
        headers = {"If-None-Match": etag} if etag else {}

        try:
            response = await self._client.get(full_url, headers=headers)
        except httpx.HTTPError as exc:
            raise GitHubFetchError.transport(full_url, exc) from exc
        status = response.status_code

        if status == _HTTP_NOT_MODIFIED:
            if cached is None:
                raise GitHubUnexpectedResponseError.not_modified_without_cache(full_url)
            logger.debug("Cached: %s", full_url)
            return cached
        if status in _HTTP_REDIRECT_RANGE:
            raise GitHubUnexpectedResponseError.redirect(full_url, status)
        if status >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise GitHubFetchError.http_error(full_url, status, response.text)

        logger.debug("Fetched: %s", full_url)
        page = CachedPage(
            url=full_url,
            body=response.text,
            next_url=response.links.get("next", {}).get("url"),
        )
        new_etag = response.headers.get("ETag")
        if status == _HTTP_OK and new_etag:
            await self._store(page, new_etag)
        return page

    async def _load_cached(self, full_url: str) -> tuple[str | None, CachedPage | None]:
        async with self._session_factory() as session:
            entry = await session.scalar(
                select(GitHubCacheEntry).where(GitHubCacheEntry.url == full_url)
            )
            if entry is None:
                return None, None
            page = CachedPage(
                url=full_url,
                body=entry.body,
                next_url=entry.next_url,
                from_cache=True,
            )
            return entry.etag, page

    async def _store(self, page: CachedPage, etag: str) -> None:
        async with self._session_factory() as session, session.begin():
            entry = await session.scalar(
                select(GitHubCacheEntry).where(GitHubCacheEntry.url == page.url)
            )
            if entry is None:
                entry = GitHubCacheEntry(url=page.url)
                session.add(entry)
            entry.etag = etag
            entry.body = page.body
            entry.next_url = page.next_url

    async def get_json(self, url: str) -> typ.Any:  # noqa: ANN401
        """Fetch ``url`` and decode its JSON body."""
        return (await self.get(url)).json()

    async def iterate(self, url: str) -> cabc.AsyncIterator[typ.Any]:
        """Yield every item of a paged list, fetching pages only as needed."""
        next_url: str | None = url
        while next_url is not None:
            page = await self.get(next_url)
            items = page.json()
            if not isinstance(items, list):
                raise GitHubUnexpectedResponseError.missing(page.url, "list body")
            for item in items:
                yield item
            next_url = page.next_url

    async def branch_head(self, repo: str, branch: str) -> str:
        """Return the commit hash ``branch`` of ``repo`` currently points at."""
        url = f"/repos/{repo}/git/refs/heads/{branch}"
        page = await self.get(url)
        try:
            ref = msgspec.json.decode(page.body, type=_GitRef)
        except msgspec.DecodeError as exc:
            raise GitHubUnexpectedResponseError.missing(page.url, "object.sha") from exc
        return ref.object.sha


class GitHubEventFeed:
    """Organisation activity feed, newest first."""

    def __init__(self, cache: GitHubCache, organisation: str) -> None:
        """Read the feed of ``organisation`` through ``cache``."""
        self._cache = cache
        self.organisation = organisation

    def iter_events(self) -> cabc.AsyncIterator[typ.Any]:
        """Yield raw events from ``/orgs/{organisation}/events``."""
        return self._cache.iterate(f"/orgs/{self.organisation}/events")

    def iter_repositories(self) -> cabc.AsyncIterator[typ.Any]:
        """Yield raw repository listings from ``/orgs/{organisation}/repos``."""
        return self._cache.iterate(f"/orgs/{self.organisation}/repos")


__all__ = [
    "DEFAULT_BASE_URL",
    "CachedPage",
    "GitHubCache",
    "GitHubConfig",
    "GitHubEventFeed",
]
