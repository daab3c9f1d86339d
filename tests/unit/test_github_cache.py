"""Unit tests for the ETag-revalidating GitHub client."""

from __future__ import annotations

import json
import secrets
import typing as typ

import httpx
import pytest

from subsync.github import (
    GitHubCache,
    GitHubConfig,
    GitHubConfigError,
    GitHubEventFeed,
    GitHubFetchError,
    GitHubNotFoundError,
    GitHubUnexpectedResponseError,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

_BASE_URL = "https://api.example.test"
_HTTP_SERVER_ERROR = 500
_HTTP_NOT_FOUND = 404

Handler: typ.TypeAlias = "cabc.Callable[[httpx.Request], httpx.Response]"


def _make_cache(
    session_factory: async_sessionmaker[AsyncSession],
    handler: Handler,
) -> tuple[GitHubCache, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(_record))
    cache = GitHubCache(
        session_factory,
        GitHubConfig(base_url=_BASE_URL),
        http_client=http_client,
    )
    return cache, requests


def _json_response(
    payload: object,
    *,
    etag: str | None = None,
    next_url: str | None = None,
) -> httpx.Response:
    headers: dict[str, str] = {}
    if etag is not None:
        headers["ETag"] = etag
    if next_url is not None:
        headers["Link"] = f'<{next_url}>; rel="next"'
    return httpx.Response(200, headers=headers, content=json.dumps(payload).encode())


@pytest.mark.asyncio
async def test_not_modified_reuses_cached_body(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """A 304 answer returns the body stored from the earlier 200."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.headers.get("If-None-Match") == '"v1"':
            return httpx.Response(304)
        return _json_response({"hello": "world"}, etag='"v1"')

    cache, requests = _make_cache(session_factory, handler)

    first = await cache.get("/orgs/boostorg")
    second = await cache.get("/orgs/boostorg")

    assert first.from_cache is False
    assert second.from_cache is True
    assert second.json() == {"hello": "world"}
    assert "If-None-Match" not in requests[0].headers
    assert requests[1].headers["If-None-Match"] == '"v1"'
    assert str(requests[0].url) == f"{_BASE_URL}/orgs/boostorg"


@pytest.mark.asyncio
async def test_changed_page_replaces_cached_body(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """A new 200 overwrites the stored body and ETag."""
    versions = iter(
        [
            _json_response({"v": 1}, etag='"v1"'),
            _json_response({"v": 2}, etag='"v2"'),
            httpx.Response(304),
        ]
    )
    cache, requests = _make_cache(session_factory, lambda _request: next(versions))

    await cache.get("/thing")
    await cache.get("/thing")
    third = await cache.get("/thing")

    assert third.json() == {"v": 2}
    assert requests[2].headers["If-None-Match"] == '"v2"'


@pytest.mark.asyncio
async def test_response_without_etag_is_not_cached(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Pages without an ETag cannot be revalidated, so are never stored."""
    cache, requests = _make_cache(
        session_factory, lambda _request: _json_response({"v": 1})
    )

    await cache.get("/thing")
    await cache.get("/thing")

    assert all("If-None-Match" not in request.headers for request in requests)


@pytest.mark.asyncio
async def test_not_modified_without_cache_is_unexpected(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """A 304 for a URL with nothing cached is an error."""
    cache, _ = _make_cache(session_factory, lambda _request: httpx.Response(304))

    with pytest.raises(GitHubUnexpectedResponseError):
        await cache.get("/thing")


@pytest.mark.asyncio
async def test_redirects_are_unsupported(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """3xx answers other than 304 are surfaced, not followed."""
    cache, _ = _make_cache(
        session_factory,
        lambda _request: httpx.Response(302, headers={"Location": "/elsewhere"}),
    )

    with pytest.raises(GitHubUnexpectedResponseError):
        await cache.get("/thing")


@pytest.mark.asyncio
async def test_not_found_raises_not_found_error(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """404 answers raise the dedicated subclass."""
    cache, _ = _make_cache(
        session_factory, lambda _request: httpx.Response(404, text="Not Found")
    )

    with pytest.raises(GitHubNotFoundError) as excinfo:
        await cache.get("/repos/boostorg/missing")

    assert excinfo.value.status_code == _HTTP_NOT_FOUND


@pytest.mark.asyncio
async def test_server_error_carries_status_and_body(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Other error statuses raise a fetch error with the response body."""
    cache, _ = _make_cache(
        session_factory, lambda _request: httpx.Response(500, text="boom")
    )

    with pytest.raises(GitHubFetchError) as excinfo:
        await cache.get("/thing")

    assert not isinstance(excinfo.value, GitHubNotFoundError)
    assert excinfo.value.status_code == _HTTP_SERVER_ERROR
    assert excinfo.value.body == "boom"


@pytest.mark.asyncio
async def test_transport_failure_raises_fetch_error(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Connection failures surface as fetch errors without a status."""

    def handler(request: httpx.Request) -> httpx.Response:
        msg = "connection refused"
        raise httpx.ConnectError(msg, request=request)

    cache, _ = _make_cache(session_factory, handler)

    with pytest.raises(GitHubFetchError) as excinfo:
        await cache.get("/thing")

    assert excinfo.value.status_code is None
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)
    assert "connection refused" in str(excinfo.value)


@pytest.mark.asyncio
async def test_non_json_body_is_unexpected(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Pages that do not decode as JSON are unexpected responses."""
    cache, _ = _make_cache(
        session_factory,
        lambda _request: httpx.Response(200, text="<html>maintenance</html>"),
    )

    with pytest.raises(GitHubUnexpectedResponseError, match="not valid JSON"):
        await cache.get_json("/thing")
    with pytest.raises(GitHubUnexpectedResponseError, match="not valid JSON"):
        _ = [item async for item in cache.iterate("/orgs/boostorg/events")]


@pytest.mark.asyncio
async def test_iterate_follows_next_links_lazily(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Later pages are fetched only when iteration reaches them."""
    page_two = f"{_BASE_URL}/orgs/boostorg/events?page=2"

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("page") == "2":
            return _json_response([{"id": 2}], etag='"p2"')
        return _json_response([{"id": 4}, {"id": 3}], etag='"p1"', next_url=page_two)

    cache, requests = _make_cache(session_factory, handler)

    items = cache.iterate("/orgs/boostorg/events")
    first = await anext(items)
    assert first == {"id": 4}
    assert len(requests) == 1
    await items.aclose()

    everything = [item async for item in cache.iterate("/orgs/boostorg/events")]

    assert everything == [{"id": 4}, {"id": 3}, {"id": 2}]
    assert str(requests[-1].url) == page_two


@pytest.mark.asyncio
async def test_cached_page_keeps_its_next_link(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Revalidated pages still know which page follows them."""
    page_two = f"{_BASE_URL}/list?page=2"

    def handler(request: httpx.Request) -> httpx.Response:
        if request.headers.get("If-None-Match"):
            return httpx.Response(304)
        if request.url.params.get("page") == "2":
            return _json_response(["b"], etag='"p2"')
        return _json_response(["a"], etag='"p1"', next_url=page_two)

    cache, _ = _make_cache(session_factory, handler)

    first_pass = [item async for item in cache.iterate("/list")]
    second_pass = [item async for item in cache.iterate("/list")]

    assert first_pass == second_pass == ["a", "b"]


@pytest.mark.asyncio
async def test_branch_head_returns_ref_sha(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """The branch head comes from the ref's object."""
    sha = secrets.token_hex(20)
    cache, requests = _make_cache(
        session_factory,
        lambda _request: _json_response(
            {"ref": "refs/heads/develop", "object": {"sha": sha, "type": "commit"}}
        ),
    )

    head = await cache.branch_head("boostorg/config", "develop")

    assert head == sha
    assert requests[0].url.path == "/repos/boostorg/config/git/refs/heads/develop"


@pytest.mark.asyncio
async def test_branch_head_rejects_unexpected_shape(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """A ref document without an object sha is an unexpected response."""
    cache, _ = _make_cache(
        session_factory, lambda _request: _json_response([{"ref": "x"}])
    )

    with pytest.raises(GitHubUnexpectedResponseError):
        await cache.branch_head("boostorg/config", "develop")


@pytest.mark.asyncio
async def test_event_feed_reads_organisation_events(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """The feed pages through the organisation events endpoint."""
    cache, requests = _make_cache(
        session_factory, lambda _request: _json_response([{"id": "1"}])
    )
    feed = GitHubEventFeed(cache, "boostorg")

    events = [event async for event in feed.iter_events()]
    repos = [repo async for repo in feed.iter_repositories()]

    assert events == repos == [{"id": "1"}]
    assert [request.url.path for request in requests] == [
        "/orgs/boostorg/events",
        "/orgs/boostorg/repos",
    ]


def test_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Environment variables override the defaults."""
    token = secrets.token_hex(8)
    monkeypatch.setenv("SUBSYNC_GITHUB_TOKEN", token)
    monkeypatch.setenv("SUBSYNC_GITHUB_URL", _BASE_URL)

    config = GitHubConfig.from_env()

    assert config.token == token
    assert config.base_url == _BASE_URL


def test_config_from_env_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    """Unset variables leave an anonymous client against api.github.com."""
    monkeypatch.delenv("SUBSYNC_GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("SUBSYNC_GITHUB_URL", raising=False)

    config = GitHubConfig.from_env()

    assert config.token is None
    assert config.base_url == "https://api.github.com"


@pytest.mark.asyncio
async def test_blank_token_is_rejected(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """An explicitly blank token is a configuration error."""
    with pytest.raises(GitHubConfigError):
        GitHubCache(session_factory, GitHubConfig(token="   "))
