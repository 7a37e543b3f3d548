"""
querychain
==========
Resumable, checkpointed pipelines of checks over GitHub repositories.
"""

from querychain.pipeline import (
    Chain,
    ChainConfigError,
    ChainRunSummary,
    CheckpointError,
    Item,
    ItemOutcome,
    ItemState,
)
from querychain.query_chain import (
    QueryChain,
    load_chain_definition,
    query_chain,
    query_chain_from_definition,
)

__all__ = [
    "Chain",
    "ChainConfigError",
    "ChainRunSummary",
    "CheckpointError",
    "Item",
    "ItemOutcome",
    "ItemState",
    "QueryChain",
    "load_chain_definition",
    "query_chain",
    "query_chain_from_definition",
]
