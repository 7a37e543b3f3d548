"""Steps backed by the GitHub API and git.

- FileExistenceStep: code search scoped to the item's repository
- CommitHistoryStep: commit search scoped to the item's repository
- CloneStep: materialize the repository locally; never stops the chain
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from loguru import logger

from querychain.github.client import GitHubClient
from querychain.github.clone import clone_repository
from querychain.pipeline.models import Item, StepOutcome
from querychain.steps.base import Step


def _repo_full_name(item: Item) -> str:
    full_name = item.record.get("full_name")
    if not isinstance(full_name, str) or "/" not in full_name:
        raise ValueError(f"Item {item.key} has no 'owner/name' full_name to search in")
    return full_name


class FileExistenceStep(Step):
    """Fails the item when no file in the repository matches the criteria.

    Writes `{valid, total_count, files: [{name, path, html_url}]}`.
    """

    def __init__(self, client: GitHubClient, criteria: Mapping[str, Any], name: str, optional: bool = False):
        super().__init__(name, optional)
        self.client = client
        self.criteria = dict(criteria)

    async def apply(self, item: Item, cursor: Optional[Dict[str, Any]] = None) -> StepOutcome:
        cursor = cursor or {}

        if isinstance(cursor.get("files"), list):
            files = cursor["files"]
            total_count = int(cursor.get("total_count") or len(files))
        else:
            logger.info(f"\tTesting for: {self.criteria} in {item.name}")
            page = await self.client.search_code(self.criteria, _repo_full_name(item))
            files = [
                {
                    "name": f.get("name"),
                    "path": f.get("path"),
                    "html_url": f.get("html_url"),
                }
                for f in page.items
            ]
            total_count = page.total_count

        valid = len(files) > 0
        self.record(item, {"valid": valid, "total_count": total_count, "files": files})
        return self.outcome(item, valid, {"files": files, "total_count": total_count})


class CommitHistoryStep(Step):
    """Fails the item when no commit in the repository matches the criteria.

    Writes `{valid, total_count, commits: [{sha, message, html_url}]}`.
    """

    def __init__(self, client: GitHubClient, criteria: Mapping[str, Any], name: str, optional: bool = False):
        super().__init__(name, optional)
        self.client = client
        self.criteria = dict(criteria)

    async def apply(self, item: Item, cursor: Optional[Dict[str, Any]] = None) -> StepOutcome:
        cursor = cursor or {}

        if isinstance(cursor.get("commits"), list):
            commits = cursor["commits"]
            total_count = int(cursor.get("total_count") or len(commits))
        else:
            logger.info(f"\tTesting for commits: {self.criteria} in {item.name}")
            page = await self.client.search_commits(self.criteria, _repo_full_name(item))
            commits = []
            for c in page.items:
                commit = c.get("commit") if isinstance(c.get("commit"), dict) else {}
                commits.append(
                    {
                        "sha": c.get("sha"),
                        "message": commit.get("message"),
                        "html_url": c.get("html_url"),
                    }
                )
            total_count = page.total_count

        valid = len(commits) > 0
        self.record(item, {"valid": valid, "total_count": total_count, "commits": commits})
        return self.outcome(item, valid, {"commits": commits, "total_count": total_count})


class CloneStep(Step):
    """Clones the repository under `folder`; a failure is recorded, not fatal.

    Writes `{valid, path, error}`. Later filesystem steps read `path`.
    """

    def __init__(self, folder: Union[str, Path], name: str = "clone"):
        super().__init__(name, optional=True)
        self.folder = Path(folder)

    async def apply(self, item: Item, cursor: Optional[Dict[str, Any]] = None) -> StepOutcome:
        cursor = cursor or {}

        previous = cursor.get("path")
        if isinstance(previous, str) and (Path(previous) / ".git").is_dir():
            self.record(item, {"valid": True, "path": previous, "error": None})
            return StepOutcome(item=item, cursor={"path": previous}, proceed=True)

        logger.info(f"\tCloning {item.name} to {self.folder}")
        result = await clone_repository(item.record, self.folder)

        self.record(item, {"valid": result.ok, "path": str(result.path), "error": result.error})
        return StepOutcome(item=item, cursor={"path": str(result.path)}, proceed=True)
