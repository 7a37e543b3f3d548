"""Chain execution engine.

A Chain pulls items one at a time from its source and runs every registered
step on each of them, in registration order. An item whose step reports
`proceed=False` is rejected and dropped; an item that clears every step is
accepted and written to the results file.

Progress is persisted as it happens:

- after each step that lets the item go on (except the last), a `MidItem`
  checkpoint holding the item, the step name and the step's cursor;
- after each item, the results file (when accepted) and then an
  `AtItemBoundary` checkpoint.

A crash therefore loses at most the work of the step in flight. Any exception
raised by the source, a step or the bookkeeping propagates out of `run`; what
was persisted before it stays valid for the next run.
"""

from __future__ import annotations

import inspect
import re
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from loguru import logger

from querychain.config import CHAIN
from querychain.pipeline.checkpoint import AtItemBoundary, CheckpointStore, MidItem, RunCheckpoint
from querychain.pipeline.errors import ChainConfigError
from querychain.pipeline.models import ChainRunSummary, Item, ItemOutcome, ItemState
from querychain.pipeline.results import ResultsStore
from querychain.pipeline.sources import ItemSource
from querychain.steps.base import Step
from querychain.tracing import get_tracer, init_tracing, safe_set_span_attributes

ItemCallback = Callable[[ItemOutcome], Union[None, Awaitable[None]]]

_CHAIN_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class Chain:
    """Ordered list of steps applied to every item of a source."""

    def __init__(
        self,
        name: str,
        source: ItemSource,
        *,
        output_dir: Optional[Union[str, Path]] = None,
        checkpoint_dir: Optional[Union[str, Path]] = None,
    ):
        if not isinstance(name, str) or not _CHAIN_NAME_RE.match(name):
            raise ChainConfigError(f"Chain name must match {_CHAIN_NAME_RE.pattern}: {name!r}")

        self.name = name
        self.source = source
        self.output_dir = Path(output_dir if output_dir is not None else CHAIN.OUTPUT_DIR)
        self.checkpoint_dir = Path(checkpoint_dir if checkpoint_dir is not None else CHAIN.CHECKPOINT_DIR)

        self.results = ResultsStore(self.output_dir / f"results_{name}.json")
        self.checkpoints = CheckpointStore(self.checkpoint_dir / f"checkpoint_{name}.json", chain_name=name)

        self._steps: List[Step] = []
        self.tracer = get_tracer("querychain.chain")

    @property
    def steps(self) -> Tuple[Step, ...]:
        return tuple(self._steps)

    def add_step(self, step: Step) -> "Chain":
        if any(s.name == step.name for s in self._steps):
            raise ChainConfigError(f"Duplicate step name {step.name!r} in chain {self.name!r}")
        self._steps.append(step)
        return self

    def _step_index(self, step_name: str) -> int:
        for index, step in enumerate(self._steps):
            if step.name == step_name:
                return index
        raise ChainConfigError(
            f"Checkpoint refers to step {step_name!r}, which chain {self.name!r} does not have"
        )

    async def run(self, callback: Optional[ItemCallback] = None, *, restart: bool = False) -> ChainRunSummary:
        """Run the chain until the source is exhausted.

        Args:
            callback: Called (or awaited) with the ItemOutcome of every item.
            restart: Discard the previous checkpoint and results first.

        Returns:
            ChainRunSummary for this run.
        """
        init_tracing()

        if restart:
            self.checkpoints.clear()
            self.results.clear()

        checkpoint: RunCheckpoint = self.checkpoints.read() or AtItemBoundary()
        self.results.load()

        summary = ChainRunSummary(
            name=self.name,
            resumed=bool(checkpoint.source_cursor) or isinstance(checkpoint, MidItem),
            results_path=self.results.path,
            checkpoint_path=self.checkpoints.path,
        )

        if summary.resumed:
            logger.info(f"Resuming chain {self.name} from {checkpoint}")
        else:
            logger.info(f"Starting chain {self.name} with {len(self._steps)} steps")

        with self.tracer.start_as_current_span("chain_run") as span:
            safe_set_span_attributes(
                span,
                {
                    "chain.name": self.name,
                    "chain.steps": [s.name for s in self._steps],
                    "chain.resumed": summary.resumed,
                },
            )

            if isinstance(checkpoint, MidItem):
                start_index = self._step_index(checkpoint.step_name)
                item = Item.from_snapshot(checkpoint.item)
                logger.info(f"Retrying {item.name} from step {checkpoint.step_name}")
                outcome = await self._process_item(
                    item,
                    checkpoint.source_cursor,
                    start_index=start_index,
                    start_cursor=checkpoint.step_cursor,
                )
                await self._finish_item(outcome, checkpoint.source_cursor, summary, callback)

            async for item, source_cursor in self.source.produce(checkpoint.source_cursor):
                outcome = await self._process_item(item, source_cursor)
                await self._finish_item(outcome, source_cursor, summary, callback)

            safe_set_span_attributes(span, summary.to_dict())

        logger.info(
            f"Chain {self.name} done: {summary.processed} processed, "
            f"{summary.accepted} accepted, {summary.rejected} rejected -> {self.results.path}"
        )
        return summary

    async def _process_item(
        self,
        item: Item,
        source_cursor: Dict[str, Any],
        *,
        start_index: int = 0,
        start_cursor: Optional[Dict[str, Any]] = None,
    ) -> ItemOutcome:
        state = ItemState.RUNNING
        rejected_by: Optional[str] = None
        last_index = len(self._steps) - 1

        logger.info(f"Processing {item.name}")

        with self.tracer.start_as_current_span("chain_item") as span:
            safe_set_span_attributes(span, {"item.key": item.key, "item.name": item.name})

            for index in range(start_index, len(self._steps)):
                step = self._steps[index]
                step_cursor = start_cursor if index == start_index else None

                with self.tracer.start_as_current_span(f"step:{step.name}") as step_span:
                    try:
                        result = await step.apply(item, dict(step_cursor or {}))
                    except Exception as e:
                        logger.error(f"Step {step.name} failed on {item.name}: {type(e).__name__}: {e}")
                        raise
                    safe_set_span_attributes(
                        step_span,
                        {"step.proceed": result.proceed, "step.optional": step.optional},
                    )

                item = result.item
                if not result.proceed:
                    state = ItemState.REJECTED
                    rejected_by = step.name
                    logger.info(f"\t{item.name} rejected by {step.name}")
                    break

                if index < last_index:
                    self.checkpoints.write(
                        MidItem(
                            source_cursor=source_cursor,
                            step_name=step.name,
                            step_cursor=result.cursor,
                            item=item.snapshot(),
                        )
                    )
            else:
                state = ItemState.ACCEPTED

            safe_set_span_attributes(span, {"item.state": state.value})

        return ItemOutcome(item=item, state=state, rejected_by=rejected_by)

    async def _finish_item(
        self,
        outcome: ItemOutcome,
        source_cursor: Dict[str, Any],
        summary: ChainRunSummary,
        callback: Optional[ItemCallback],
    ) -> None:
        if outcome.accepted:
            self.results.add(outcome.item)
            summary.accepted += 1
            logger.info(f"\t{outcome.item.name} accepted")
        else:
            summary.rejected += 1

        self.checkpoints.write(AtItemBoundary(source_cursor=source_cursor))
        summary.processed += 1

        if callback is not None:
            maybe_awaitable = callback(outcome)
            if inspect.isawaitable(maybe_awaitable):
                await maybe_awaitable
