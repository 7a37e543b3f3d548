"""Accepted-results collection.

`results_<name>.json` maps item key to the item record with its property
bag. The file is rewritten after every accepted item, so at any moment it is
a loadable superset of everything accepted so far.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from loguru import logger

from querychain.config import TIMEOUTS
from querychain.pipeline.models import Item
from querychain.utils.json_io import read_json_object, remove_file, write_json_atomic


class ResultsStore:
    """Incrementally written mapping of accepted items."""

    def __init__(self, path: Path, lock_timeout_seconds: int = TIMEOUTS.FILE_LOCK):
        self.path = Path(path)
        self.lock_timeout_seconds = lock_timeout_seconds
        self._results: Dict[str, Dict[str, Any]] = {}

    @property
    def results(self) -> Dict[str, Dict[str, Any]]:
        return self._results

    def load(self) -> Dict[str, Dict[str, Any]]:
        """Load previously accepted items from disk (empty when the file is absent)."""
        payload = read_json_object(self.path)
        self._results = {}
        if payload is None:
            return self._results

        for key, value in payload.items():
            if not isinstance(value, dict):
                raise ValueError(f"Result {key!r} in {self.path} must be an object")
            self._results[str(key)] = value

        logger.debug(f"Loaded {len(self._results)} accepted items from {self.path}")
        return self._results

    def add(self, item: Item) -> None:
        self._results[item.key] = item.to_dict()
        write_json_atomic(self.path, self._results, lock_timeout_seconds=self.lock_timeout_seconds)

    def clear(self) -> None:
        self._results = {}
        if remove_file(self.path):
            logger.info(f"Removed results {self.path}")
