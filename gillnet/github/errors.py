"""GitHub REST errors."""

from __future__ import annotations

import http

_MISSING_STATUSES = frozenset({http.HTTPStatus.NOT_FOUND, http.HTTPStatus.GONE})
_MISSING_MESSAGES = frozenset({"not found", "not found."})


class GitHubAPIError(RuntimeError):
    """Raised when GitHub returns an error response."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        api_message: str | None = None,
    ) -> None:
        """Initialise with a message, HTTP status and GitHub's own message."""
        self.status_code = status_code
        self.api_message = api_message
        super().__init__(message)

    @classmethod
    def http_error(
        cls, status_code: int, url: str, api_message: str | None = None
    ) -> GitHubAPIError:
        """Return an error for non-2xx HTTP responses."""
        detail = f": {api_message}" if api_message else ""
        return cls(
            f"GitHub HTTP {status_code} for {url}{detail}",
            status_code=status_code,
            api_message=api_message,
        )

    @property
    def is_missing_resource(self) -> bool:
        """Return True for 404/410 responses or a "Not Found" message."""
        if self.status_code in _MISSING_STATUSES:
            return True
        message = (self.api_message or "").strip().lower()
        return message in _MISSING_MESSAGES


class GitHubResponseShapeError(RuntimeError):
    """Raised when GitHub REST responses are missing expected fields."""

    @classmethod
    def missing(cls, field: str) -> GitHubResponseShapeError:
        """Return an error for a missing response field."""
        return cls(f"GitHub response missing expected field: {field}")

    @classmethod
    def expected(cls, kind: str, url: str) -> GitHubResponseShapeError:
        """Return an error when the response body has the wrong JSON type."""
        return cls(f"GitHub response for {url} is not a JSON {kind}")


class GitHubConfigError(RuntimeError):
    """Raised when GitHub client configuration is invalid."""

    @classmethod
    def missing_token(cls) -> GitHubConfigError:
        """Return an error when no GitHub token is configured."""
        return cls("GITHUB_TOKEN must be set")

    @classmethod
    def empty_token(cls) -> GitHubConfigError:
        """Return an error when the provided token is empty."""
        return cls("GitHub token must be non-empty")
