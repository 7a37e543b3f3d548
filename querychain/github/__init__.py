"""GitHub backend: search client, query builder and cloning."""

from .client import GitHubClient, GitHubError, GitHubRateLimitError, SearchPage
from .clone import CloneResult, clone_repository
from .query import build_search_query

__all__ = [
    "GitHubClient",
    "GitHubError",
    "GitHubRateLimitError",
    "SearchPage",
    "CloneResult",
    "clone_repository",
    "build_search_query",
]
