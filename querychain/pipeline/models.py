"""Pipeline data model.

Items flowing through a chain, the outcome of a single step and the
per-item and per-run summaries handed back to callers.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class ItemState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass
class Item:
    """A repository record travelling through the chain.

    `properties` maps a step name to the result that step recorded. Steps only
    ever write their own key, so entries accumulate across the chain.
    """

    key: str
    record: Dict[str, Any] = field(default_factory=dict)
    properties: Dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return str(self.record.get("full_name") or self.record.get("name") or self.key)

    def property_path(self, property_name: str) -> Optional[Path]:
        """Local path recorded by a clone step, if any."""
        prop = self.properties.get(property_name)
        if not isinstance(prop, dict):
            return None
        path = prop.get("path")
        if not isinstance(path, str) or not path:
            return None
        return Path(path)

    def to_dict(self) -> Dict[str, Any]:
        """Persisted form: the record with its property bag attached."""
        payload = copy.deepcopy(self.record)
        payload["properties"] = copy.deepcopy(self.properties)
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any], key: Optional[str] = None) -> "Item":
        record = copy.deepcopy(payload)
        properties = record.pop("properties", None)
        if not isinstance(properties, dict):
            properties = {}

        if key is None:
            raw_id = record.get("id")
            if raw_id is None or raw_id == "":
                raise ValueError("Record has no 'id' to key it by")
            key = str(raw_id)

        return cls(key=str(key), record=record, properties=properties)

    def snapshot(self) -> Dict[str, Any]:
        """Checkpoint form, keeping key, record and properties apart."""
        return {
            "key": self.key,
            "record": copy.deepcopy(self.record),
            "properties": copy.deepcopy(self.properties),
        }

    @classmethod
    def from_snapshot(cls, payload: Dict[str, Any]) -> "Item":
        return cls(
            key=str(payload["key"]),
            record=copy.deepcopy(payload.get("record") or {}),
            properties=copy.deepcopy(payload.get("properties") or {}),
        )


@dataclass
class StepOutcome:
    """What a step hands back: the updated item, its cursor and whether to go on."""

    item: Item
    cursor: Dict[str, Any] = field(default_factory=dict)
    proceed: bool = True


@dataclass
class ItemOutcome:
    item: Item
    state: ItemState
    rejected_by: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.state is ItemState.ACCEPTED


@dataclass
class ChainRunSummary:
    name: str
    processed: int = 0
    accepted: int = 0
    rejected: int = 0
    resumed: bool = False
    results_path: Optional[Path] = None
    checkpoint_path: Optional[Path] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "processed": self.processed,
            "accepted": self.accepted,
            "rejected": self.rejected,
            "resumed": self.resumed,
            "results_path": str(self.results_path) if self.results_path else None,
            "checkpoint_path": str(self.checkpoint_path) if self.checkpoint_path else None,
        }
