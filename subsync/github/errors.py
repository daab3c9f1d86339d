"""GitHub API errors."""

from __future__ import annotations

_NOT_FOUND = 404


class GitHubFetchError(RuntimeError):
    """Raised when GitHub returns an error response."""

    def __init__(
        self, message: str, *, status_code: int | None, body: str = ""
    ) -> None:
        """Initialise with the HTTP status code, if any, and response body."""
        self.status_code = status_code
        self.body = body
        super().__init__(message)

    @classmethod
    def http_error(cls, url: str, status_code: int, body: str) -> GitHubFetchError:
        """Return the error for a non-2xx response, 404s as not-found."""
        error_cls = GitHubNotFoundError if status_code == _NOT_FOUND else cls
        detail = body.strip() or "no response body"
        return error_cls(
            f"GitHub HTTP {status_code} for {url}: {detail}",
            status_code=status_code,
            body=body,
        )

    @classmethod
    def transport(cls, url: str, exc: Exception) -> GitHubFetchError:
        """Return an error for a request that never produced a response."""
        return cls(
            f"GitHub request for {url} failed: {type(exc).__name__}: {exc}",
            status_code=None,
        )


class GitHubNotFoundError(GitHubFetchError):
    """Raised when the requested GitHub resource does not exist."""


class GitHubUnexpectedResponseError(RuntimeError):
    """Raised for responses the conditional cache does not handle."""

    @classmethod
    def redirect(cls, url: str, status_code: int) -> GitHubUnexpectedResponseError:
        """Return an error for a redirect status."""
        return cls(f"GitHub redirected {url} with HTTP {status_code}; unsupported")

    @classmethod
    def not_modified_without_cache(cls, url: str) -> GitHubUnexpectedResponseError:
        """Return an error for a 304 when nothing is cached for the URL."""
        return cls(f"GitHub returned 304 for uncached URL {url}")

    @classmethod
    def missing(cls, url: str, field: str) -> GitHubUnexpectedResponseError:
        """Return an error for a JSON document missing an expected field."""
        return cls(f"GitHub response for {url} missing expected field: {field}")

    @classmethod
    def invalid_json(cls, url: str) -> GitHubUnexpectedResponseError:
        """Return an error for a body that does not decode as JSON."""
        return cls(f"GitHub response for {url} is not valid JSON")


class GitHubConfigError(RuntimeError):
    """Raised when GitHub client configuration is invalid."""

    @classmethod
    def empty_token(cls) -> GitHubConfigError:
        """Return an error when the provided token is empty."""
        return cls("GitHub token must be non-empty when provided")
