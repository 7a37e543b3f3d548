"""Step contract.

A step receives the current item and the cursor it returned the last time it
ran on that item (empty on a first run). It writes its result under
`item.properties[self.name]` and returns a StepOutcome telling the chain
whether the item goes on.

Re-invoking a step with its own cursor must not redo completed external work
nor touch properties written by other steps.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from querychain.pipeline.models import Item, StepOutcome


class Step(ABC):
    """Base class for every chain step."""

    def __init__(self, name: str, optional: bool = False):
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Step name must be a non-empty string")
        self.name = name
        self.optional = optional

    @abstractmethod
    async def apply(self, item: Item, cursor: Optional[Dict[str, Any]] = None) -> StepOutcome:
        """Run the step on item."""

    def record(self, item: Item, result: Dict[str, Any]) -> None:
        item.properties[self.name] = result

    def outcome(self, item: Item, valid: bool, cursor: Optional[Dict[str, Any]] = None) -> StepOutcome:
        """Build the outcome for a step whose result is `valid`; optional steps always proceed."""
        return StepOutcome(item=item, cursor=cursor or {}, proceed=bool(valid) or self.optional)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, optional={self.optional})"
