"""Item sources.

A source lazily produces `(item, cursor)` pairs. The cursor yielded with an
item is the position right after it: passing it to a fresh `produce` call
resumes with the next item. An empty cursor starts from the beginning.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple, Union

from loguru import logger

from querychain.config import GITHUB
from querychain.github.client import GitHubClient
from querychain.pipeline.errors import ChainConfigError
from querychain.pipeline.models import Item


def _cursor_index(cursor: Optional[Dict[str, Any]]) -> int:
    if not cursor:
        return 0
    index = cursor.get("index", 0)
    if not isinstance(index, int) or index < 0:
        raise ValueError(f"Invalid source cursor: {cursor!r}")
    return index


class ItemSource(ABC):
    """Restartable lazy producer of items."""

    @abstractmethod
    def produce(self, cursor: Optional[Dict[str, Any]] = None) -> AsyncIterator[Tuple[Item, Dict[str, Any]]]:
        """Yield items from the position identified by cursor."""


class JsonFileSource(ItemSource):
    """Replays records serialized to a JSON file.

    The file holds either an object mapping key to record (a previous
    results_<name>.json, for instance) or a list of records keyed by `id`.
    Properties already attached to records are kept.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _load(self) -> List[Item]:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError(f"Cannot read records from {self.path}: {type(e).__name__}: {e}") from e

        if isinstance(payload, dict):
            entries = [(str(k), v) for k, v in payload.items()]
        elif isinstance(payload, list):
            entries = [(None, v) for v in payload]
        else:
            raise ValueError(f"Records file {self.path} must hold a JSON object or list")

        items: List[Item] = []
        for key, record in entries:
            if not isinstance(record, dict):
                raise ValueError(f"Record {key!r} in {self.path} must be an object")
            items.append(Item.from_dict(record, key=key))
        return items

    async def produce(self, cursor: Optional[Dict[str, Any]] = None) -> AsyncIterator[Tuple[Item, Dict[str, Any]]]:
        start = _cursor_index(cursor)
        items = self._load()
        if start:
            logger.info(f"Resuming {self.path.name} at record {start}/{len(items)}")
        for index in range(start, len(items)):
            yield items[index], {"index": index + 1}


class GitHubQuerySource(ItemSource):
    """Streams the results of a repository search, page by page.

    Cursor `{"index": k}` is the number of results already emitted; resuming
    fetches the page holding result k and skips the part already seen.
    """

    def __init__(
        self,
        client: GitHubClient,
        criteria: Mapping[str, Any],
        *,
        per_page: int = GITHUB.PER_PAGE,
        max_items: Optional[int] = None,
    ):
        self.client = client
        self.criteria = dict(criteria)
        self.per_page = max(1, min(per_page, 100))
        self.max_items = max_items

    def _limit(self, total_count: int) -> int:
        limit = min(total_count, GITHUB.MAX_SEARCH_RESULTS)
        if self.max_items is not None:
            limit = min(limit, self.max_items)
        return limit

    async def produce(self, cursor: Optional[Dict[str, Any]] = None) -> AsyncIterator[Tuple[Item, Dict[str, Any]]]:
        index = _cursor_index(cursor)
        page = index // self.per_page + 1
        offset = index % self.per_page

        while True:
            if self.max_items is not None and index >= self.max_items:
                return
            if index >= GITHUB.MAX_SEARCH_RESULTS:
                return

            result = await self.client.search_repositories(self.criteria, page=page, per_page=self.per_page)
            limit = self._limit(result.total_count)
            logger.info(f"Query page {page}: {len(result.items)} repositories ({result.total_count} total)")

            for record in result.items[offset:]:
                if index >= limit:
                    return
                yield Item.from_dict(record), {"index": index + 1}
                index += 1

            if len(result.items) < self.per_page or index >= limit:
                return
            page += 1
            offset = 0


def build_source(params: Mapping[str, Any], client: Optional[GitHubClient] = None) -> ItemSource:
    """Build the source described by chain parameters.

    `{"type": "query", "query": {...}}` searches GitHub;
    `{"type": "file", "path": "..."}` replays a JSON file.

    Raises:
        ChainConfigError: On an unknown type or missing parameters.
    """
    source_type = params.get("type")

    if source_type == "query":
        query = params.get("query")
        if not isinstance(query, Mapping) or not query:
            raise ChainConfigError("Query chain needs a non-empty 'query' object")
        if client is None:
            raise ChainConfigError("Query chain needs a GitHub client")
        return GitHubQuerySource(client, query, max_items=params.get("max_items"))

    if source_type == "file":
        path = params.get("path")
        if not isinstance(path, (str, Path)) or not str(path):
            raise ChainConfigError("File chain needs a 'path'")
        return JsonFileSource(path)

    raise ChainConfigError(f"Bad chain type: {source_type!r}")
