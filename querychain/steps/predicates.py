"""Predicate step: an arbitrary boolean test of the item's current state."""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from querychain.pipeline.models import Item, StepOutcome
from querychain.steps.base import Step

Condition = Callable[[Item], bool]


class PredicateStep(Step):
    """Stops the item when `condition(item)` is false.

    Nothing is written to the property bag unless `record_property` is set.
    """

    def __init__(self, condition: Condition, name: str, record_property: bool = False):
        super().__init__(name, optional=False)
        self.condition = condition
        self.record_property = record_property

    async def apply(self, item: Item, cursor: Optional[Dict[str, Any]] = None) -> StepOutcome:
        valid = bool(self.condition(item))
        if self.record_property:
            self.record(item, {"valid": valid})
        return self.outcome(item, valid)


def field_condition(field: str, *, equals: Any = None, minimum: Optional[float] = None) -> Condition:
    """Condition over a record field, used by declarative chain definitions."""

    def condition(item: Item) -> bool:
        value = item.record.get(field)
        if minimum is not None:
            try:
                return value is not None and float(value) >= minimum
            except (TypeError, ValueError):
                return False
        return value == equals

    return condition
