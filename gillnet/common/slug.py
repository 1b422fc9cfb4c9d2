"""Repository slug utilities.

Slugs are GitHub identifiers in ``owner/name`` form. They are not filesystem
paths, so parse them with these helpers rather than ``pathlib``.
"""

from __future__ import annotations


def repo_slug(owner: str, name: str) -> str:
    """Build a repository slug from owner and name.

    >>> repo_slug("strands-agents", "sdk-python")
    'strands-agents/sdk-python'

    """
    return f"{owner}/{name}"


def number_from_url(url: object) -> int:
    """Return the trailing integer path segment of an API URL, or 0.

    Comment payloads reference their parent only through ``issue_url`` or
    ``pull_request_url``; the parent number is the last segment.

    >>> number_from_url("https://api.github.com/repos/o/r/issues/42")
    42
    >>> number_from_url(None)
    0

    """
    if not isinstance(url, str):
        return 0
    tail = url.rstrip("/").rsplit("/", 1)[-1]
    return int(tail) if tail.isdigit() else 0
