"""Run checkpoints.

A checkpoint is always one of two positions that are safe to resume from:

- `AtItemBoundary`: start the next item the source emits after `source_cursor`.
- `MidItem`: re-invoke step `step_name` of the snapshotted in-flight item with
  `step_cursor`, finish that item, then continue the source from
  `source_cursor`.

The in-flight item is stored whole in `MidItem` so properties written by the
steps that already ran survive the restart.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from loguru import logger

from querychain.config import TIMEOUTS
from querychain.utils.json_io import read_json_object, remove_file, write_json_atomic
from querychain.utils.schema_validation import validate_run_checkpoint

SCHEMA_VERSION = "1.0"


class CheckpointError(ValueError):
    """Raised when a persisted checkpoint cannot be restored."""


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class AtItemBoundary:
    source_cursor: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MidItem:
    source_cursor: Dict[str, Any]
    step_name: str
    step_cursor: Dict[str, Any]
    item: Dict[str, Any]


RunCheckpoint = Union[AtItemBoundary, MidItem]


def checkpoint_to_payload(chain_name: str, checkpoint: RunCheckpoint) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "schema_version": SCHEMA_VERSION,
        "chain": chain_name,
        "updated_at": _utc_now_iso(),
        "source_cursor": copy.deepcopy(checkpoint.source_cursor),
    }

    if isinstance(checkpoint, AtItemBoundary):
        payload["state"] = "at_item_boundary"
    elif isinstance(checkpoint, MidItem):
        payload["state"] = "mid_item"
        payload["step_name"] = checkpoint.step_name
        payload["step_cursor"] = copy.deepcopy(checkpoint.step_cursor)
        payload["item"] = copy.deepcopy(checkpoint.item)
    else:
        raise TypeError(f"Unknown checkpoint type: {type(checkpoint).__name__}")

    return payload


def checkpoint_from_payload(payload: Dict[str, Any]) -> RunCheckpoint:
    """Rebuild a checkpoint from its persisted form.

    Raises:
        CheckpointError: When the payload does not match the checkpoint schema.
    """
    try:
        validate_run_checkpoint(payload)
    except ValueError as e:
        raise CheckpointError(f"Invalid checkpoint: {e}") from e

    if payload["state"] == "at_item_boundary":
        return AtItemBoundary(source_cursor=dict(payload["source_cursor"]))

    return MidItem(
        source_cursor=dict(payload["source_cursor"]),
        step_name=str(payload["step_name"]),
        step_cursor=dict(payload["step_cursor"]),
        item=dict(payload["item"]),
    )


class CheckpointStore:
    """Persists the run checkpoint of one chain as a JSON file."""

    def __init__(self, path: Path, chain_name: str, lock_timeout_seconds: int = TIMEOUTS.FILE_LOCK):
        self.path = Path(path)
        self.chain_name = chain_name
        self.lock_timeout_seconds = lock_timeout_seconds

    def read(self) -> Optional[RunCheckpoint]:
        """Return the stored checkpoint, or None when there is none yet."""
        try:
            payload = read_json_object(self.path)
        except ValueError as e:
            raise CheckpointError(str(e)) from e

        if payload is None:
            return None

        stored_chain = payload.get("chain")
        if stored_chain != self.chain_name:
            raise CheckpointError(
                f"Checkpoint {self.path} belongs to chain {stored_chain!r}, not {self.chain_name!r}"
            )

        return checkpoint_from_payload(payload)

    def write(self, checkpoint: RunCheckpoint) -> None:
        payload = checkpoint_to_payload(self.chain_name, checkpoint)
        write_json_atomic(self.path, payload, lock_timeout_seconds=self.lock_timeout_seconds)

    def clear(self) -> None:
        if remove_file(self.path):
            logger.info(f"Removed checkpoint {self.path}")
