"""Resumable chain engine.

Sources produce items, steps decide per item whether to keep going, and the
chain persists checkpoints and accepted results as it goes.
"""

from .errors import ChainConfigError
from .models import ChainRunSummary, Item, ItemOutcome, ItemState, StepOutcome
from .checkpoint import AtItemBoundary, CheckpointError, CheckpointStore, MidItem
from .results import ResultsStore
from .sources import GitHubQuerySource, ItemSource, JsonFileSource, build_source
from .chain import Chain

__all__ = [
    "AtItemBoundary",
    "Chain",
    "ChainConfigError",
    "ChainRunSummary",
    "CheckpointError",
    "CheckpointStore",
    "GitHubQuerySource",
    "Item",
    "ItemOutcome",
    "ItemSource",
    "ItemState",
    "JsonFileSource",
    "MidItem",
    "ResultsStore",
    "StepOutcome",
    "build_source",
]
