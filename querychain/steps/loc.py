"""Line-count threshold step.

Walks the local checkout left by a clone step, keeps files with the wanted
extension and ancestor folders, sums their non-blank lines and compares the
total to a threshold (strict `>`; the default -1 always passes).
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

from loguru import logger

from querychain.pipeline.models import Item, StepOutcome
from querychain.steps.base import Step
from querychain.utils.filesystem import (
    count_lines,
    exclude_ancestors,
    filter_by_ancestors,
    filter_by_extension,
    walk_files,
)


def count_checkout_lines(
    root: Path,
    extension: Union[str, Sequence[str]],
    parents: Sequence[str],
    exclude: Optional[Sequence[str]] = None,
) -> int:
    files = filter_by_extension(walk_files(root), extension)
    if exclude is None:
        files = filter_by_ancestors(files, root, parents)
    else:
        files = exclude_ancestors(files, root, parents, exclude)
    return sum(count_lines(f) for f in files)


class LineCountStep(Step):
    """Writes `{valid, loc}`; valid when loc > threshold.

    With `exclude` unset only files below a folder named in `parents` count
    (empty `parents` counts every file). With `exclude` set, files below a
    folder named in `exclude` are dropped as well.
    """

    def __init__(
        self,
        parents: Sequence[str],
        extension: Union[str, Sequence[str]],
        name: str,
        threshold: int = -1,
        optional: bool = False,
        exclude: Optional[Sequence[str]] = None,
        clone_property: str = "clone",
    ):
        super().__init__(name, optional)
        self.parents = list(parents)
        self.extension = extension if isinstance(extension, str) else list(extension)
        self.threshold = threshold
        self.exclude = list(exclude) if exclude is not None else None
        self.clone_property = clone_property

    def _describe(self) -> str:
        if self.exclude is None:
            return f"with {self.parents}"
        return f"with {self.parents} excluding {self.exclude}"

    async def apply(self, item: Item, cursor: Optional[Dict[str, Any]] = None) -> StepOutcome:
        cursor = cursor or {}

        if isinstance(cursor.get("loc"), int):
            loc = cursor["loc"]
        else:
            root = item.property_path(self.clone_property)
            if root is None:
                logger.warning(f"\tNo local checkout for {item.name}; counting 0 lines")
                loc = 0
            else:
                loc = await asyncio.to_thread(
                    count_checkout_lines, root, self.extension, self.parents, self.exclude
                )
            logger.info(f"\ttotal loc {self._describe()}: {loc}")

        valid = loc > self.threshold
        self.record(item, {"valid": valid, "loc": loc})
        return self.outcome(item, valid, {"loc": loc})
