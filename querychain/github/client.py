"""
GitHub API Client
=================
Async access to the GitHub REST search endpoints the chain relies on:

- /search/repositories: the paginated stream of candidate repositories
- /search/code: file existence inside one repository
- /search/commits: commit history inside one repository

Search endpoints are aggressively rate limited. When GitHub reports an
exhausted quota the client sleeps until the window resets (capped by
TIMEOUTS.RATE_LIMIT_MAX_WAIT) and retries through tenacity.

API Documentation: https://docs.github.com/en/rest/search/search
"""

import asyncio
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import httpx
from loguru import logger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from querychain.config import GITHUB, TIMEOUTS
from querychain.github.query import build_search_query, search_params

DEFAULT_TIMEOUT = httpx.Timeout(TIMEOUTS.GITHUB_API, connect=TIMEOUTS.GITHUB_CONNECT)


class GitHubError(RuntimeError):
    """Raised when the GitHub API rejects a request."""


class GitHubRateLimitError(GitHubError):
    """Raised after waiting out a rate limit so the request is retried."""


class GitHubServerError(GitHubError):
    """Raised on 5xx responses so the request is retried."""


@dataclass
class SearchPage:
    """One page of a search endpoint."""

    items: List[Dict[str, Any]] = field(default_factory=list)
    total_count: int = 0
    incomplete_results: bool = False
    page: int = 1
    per_page: int = 100
    query: str = ""


def _rate_limit_wait_seconds(response: httpx.Response, now: Optional[float] = None) -> float:
    """Seconds to wait before retrying a rate-limited response."""
    now = time.time() if now is None else now
    retry_after = response.headers.get("retry-after")
    wait: float = 0.0
    if retry_after:
        try:
            wait = float(retry_after)
        except ValueError:
            wait = 0.0
    else:
        reset = response.headers.get("x-ratelimit-reset")
        if reset:
            try:
                wait = float(reset) - now + 1
            except ValueError:
                wait = 0.0
    return max(1.0, min(wait, float(TIMEOUTS.RATE_LIMIT_MAX_WAIT)))


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code != 403:
        return False
    if response.headers.get("x-ratelimit-remaining") == "0":
        return True
    if response.headers.get("retry-after"):
        return True
    return "rate limit" in response.text.lower()


class GitHubClient:
    """Async client for the GitHub search API.

    Usage:
        async with GitHubClient() as client:
            page = await client.search_repositories({"language": "go", "stars": ">500"})
            for repo in page.items:
                print(repo["full_name"])
    """

    def __init__(
        self,
        token: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            token: Personal access token; defaults to the GITHUB_TOKEN env var.
            api_base: API root, for GitHub Enterprise.
            timeout: Optional custom timeout configuration.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self.token = token if token is not None else (os.getenv("GITHUB_TOKEN") or GITHUB.TOKEN)
        self.api_base = (api_base or GITHUB.API_BASE).rstrip("/")
        self.timeout = timeout or DEFAULT_TIMEOUT
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB.API_VERSION,
            "User-Agent": "querychain",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.api_base,
                timeout=self.timeout,
                headers=self._headers(),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @retry(
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError, GitHubRateLimitError, GitHubServerError)),
        reraise=True,
    )
    async def _search(
        self,
        endpoint: str,
        query: str,
        *,
        page: int = 1,
        per_page: int = 100,
        extra_params: Optional[Mapping[str, str]] = None,
    ) -> SearchPage:
        client = await self._get_client()

        params: Dict[str, str] = {
            "q": query,
            "page": str(page),
            "per_page": str(max(1, min(per_page, 100))),
        }
        if extra_params:
            params.update(extra_params)

        logger.debug(f"GitHub {endpoint}: {query} (page={page})")
        response = await client.get(endpoint, params=params)

        if _is_rate_limited(response):
            wait = _rate_limit_wait_seconds(response)
            logger.warning(f"GitHub rate limit hit on {endpoint}, waiting {wait:.0f}s")
            await asyncio.sleep(wait)
            raise GitHubRateLimitError(f"Rate limited on {endpoint}")

        if response.status_code >= 500:
            logger.warning(f"GitHub server error {response.status_code} on {endpoint}")
            raise GitHubServerError(f"GitHub returned {response.status_code} for {endpoint}")

        if response.status_code >= 400:
            message = ""
            try:
                message = str(response.json().get("message") or "")
            except ValueError:
                message = response.text[:200]
            logger.error(f"GitHub API error {response.status_code} on {endpoint}: {message}")
            raise GitHubError(f"GitHub returned {response.status_code} for {endpoint} ({query}): {message}")

        data = response.json()
        items = [i for i in (data.get("items") or []) if isinstance(i, dict)]

        return SearchPage(
            items=items,
            total_count=int(data.get("total_count") or 0),
            incomplete_results=bool(data.get("incomplete_results")),
            page=page,
            per_page=per_page,
            query=query,
        )

    async def search_repositories(
        self,
        criteria: Mapping[str, Any],
        *,
        page: int = 1,
        per_page: int = GITHUB.PER_PAGE,
    ) -> SearchPage:
        """Search repositories matching criteria (one page)."""
        query = build_search_query(criteria)
        return await self._search(
            "/search/repositories",
            query,
            page=page,
            per_page=per_page,
            extra_params=search_params(criteria),
        )

    async def search_code(
        self,
        criteria: Mapping[str, Any],
        repo_full_name: str,
        *,
        per_page: int = 100,
    ) -> SearchPage:
        """Search files matching criteria inside one repository."""
        query = build_search_query(criteria, repo=repo_full_name)
        return await self._search("/search/code", query, per_page=per_page)

    async def search_commits(
        self,
        criteria: Mapping[str, Any],
        repo_full_name: str,
        *,
        per_page: int = 100,
    ) -> SearchPage:
        """Search commits matching criteria inside one repository."""
        query = build_search_query(criteria, repo=repo_full_name)
        return await self._search(
            "/search/commits",
            query,
            per_page=per_page,
            extra_params=search_params(criteria),
        )
