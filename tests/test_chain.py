"""
Tests for the Chain engine
==========================
Ordering, vetoes, persistence after every item and resume from both kinds
of checkpoint.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from querychain.pipeline.chain import Chain
from querychain.pipeline.checkpoint import AtItemBoundary, CheckpointStore, MidItem
from querychain.pipeline.errors import ChainConfigError
from querychain.pipeline.models import Item, ItemState, StepOutcome
from querychain.pipeline.sources import ItemSource
from querychain.steps.base import Step


class ListSource(ItemSource):
    """In-memory source; optionally raises once `fail_at` items were emitted."""

    def __init__(self, records: List[Dict[str, Any]], fail_at: Optional[int] = None):
        self.records = records
        self.fail_at = fail_at
        self.started_at: List[int] = []

    async def produce(self, cursor=None):
        start = (cursor or {}).get("index", 0)
        self.started_at.append(start)
        for index in range(start, len(self.records)):
            if self.fail_at is not None and index == self.fail_at:
                raise RuntimeError("source went away")
            yield Item.from_dict(self.records[index]), {"index": index + 1}


class RecordingStep(Step):
    """Step whose verdict comes from a record field; logs every call."""

    def __init__(self, name: str, field: Optional[str] = None, optional: bool = False, fail_on: Optional[str] = None):
        super().__init__(name, optional)
        self.field = field
        self.fail_on = fail_on
        self.calls: List[tuple] = []

    async def apply(self, item, cursor=None):
        self.calls.append((item.key, dict(cursor or {})))
        if self.fail_on is not None and item.key == self.fail_on:
            raise RuntimeError(f"{self.name} crashed")
        valid = True if self.field is None else bool(item.record.get(self.field))
        self.record(item, {"valid": valid, "seen": sorted(item.properties)})
        return self.outcome(item, valid, {"done": True})


def _records() -> List[Dict[str, Any]]:
    return [
        {"id": 1, "full_name": "a/one", "good": True},
        {"id": 2, "full_name": "b/two", "good": False},
        {"id": 3, "full_name": "c/three", "good": True},
    ]


def _read(path: Path) -> Dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def dirs(tmp_path):
    return {"output_dir": tmp_path / "out", "checkpoint_dir": tmp_path / "cp"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_steps_run_in_registration_order_and_accumulate_properties(dirs):
    first = RecordingStep("first")
    second = RecordingStep("second")
    chain = Chain("order", ListSource(_records()[:1]), **dirs).add_step(first).add_step(second)

    summary = await chain.run()

    results = _read(chain.results.path)
    props = results["1"]["properties"]
    assert props["first"]["seen"] == []
    assert props["second"]["seen"] == ["first"]
    assert summary.accepted == 1
    assert summary.processed == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_veto_stops_item_and_skips_later_steps(dirs):
    gate = RecordingStep("gate", field="good")
    after = RecordingStep("after")
    chain = Chain("veto", ListSource(_records()), **dirs).add_step(gate).add_step(after)

    outcomes = []
    summary = await chain.run(outcomes.append)

    assert [o.state for o in outcomes] == [ItemState.ACCEPTED, ItemState.REJECTED, ItemState.ACCEPTED]
    assert outcomes[1].rejected_by == "gate"
    assert [key for key, _ in after.calls] == ["1", "3"]
    assert sorted(_read(chain.results.path)) == ["1", "3"]
    assert (summary.accepted, summary.rejected) == (2, 1)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_optional_step_records_failure_but_proceeds(dirs):
    gate = RecordingStep("gate", field="good", optional=True)
    chain = Chain("optional", ListSource(_records()), **dirs).add_step(gate)

    summary = await chain.run()

    results = _read(chain.results.path)
    assert sorted(results) == ["1", "2", "3"]
    assert results["2"]["properties"]["gate"]["valid"] is False
    assert summary.rejected == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_async_callback_is_awaited(dirs):
    seen = []

    async def callback(outcome):
        seen.append(outcome.item.key)

    chain = Chain("callback", ListSource(_records()), **dirs).add_step(RecordingStep("only"))
    await chain.run(callback)

    assert seen == ["1", "2", "3"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_boundary_checkpoint_written_after_each_item(dirs):
    chain = Chain("boundary", ListSource(_records()), **dirs).add_step(RecordingStep("only"))
    await chain.run()

    checkpoint = chain.checkpoints.read()
    assert checkpoint == AtItemBoundary(source_cursor={"index": 3})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_rerun_after_completion_processes_nothing(dirs):
    source = ListSource(_records())
    step = RecordingStep("only")
    chain = Chain("idempotent", source, **dirs).add_step(step)
    await chain.run()
    step.calls.clear()

    summary = await chain.run()

    assert step.calls == []
    assert summary.processed == 0
    assert summary.resumed is True
    assert sorted(_read(chain.results.path)) == ["1", "2", "3"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_source_failure_keeps_persisted_results_and_resumes(dirs):
    failing = ListSource(_records(), fail_at=2)
    chain = Chain("flaky", failing, **dirs).add_step(RecordingStep("only"))

    with pytest.raises(RuntimeError, match="source went away"):
        await chain.run()

    assert sorted(_read(chain.results.path)) == ["1", "2"]
    assert chain.checkpoints.read() == AtItemBoundary(source_cursor={"index": 2})

    healthy = ListSource(_records())
    step = RecordingStep("only")
    resumed = Chain("flaky", healthy, **dirs).add_step(step)
    summary = await resumed.run()

    assert healthy.started_at == [2]
    assert [key for key, _ in step.calls] == ["3"]
    assert sorted(_read(resumed.results.path)) == ["1", "2", "3"]
    assert summary.processed == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_step_failure_resumes_mid_item_with_step_cursor(dirs):
    first = RecordingStep("first")
    second = RecordingStep("second", fail_on="2")
    chain = Chain("mid", ListSource(_records()), **dirs).add_step(first).add_step(second)

    with pytest.raises(RuntimeError, match="second crashed"):
        await chain.run()

    checkpoint = chain.checkpoints.read()
    assert isinstance(checkpoint, MidItem)
    assert checkpoint.step_name == "first"
    assert checkpoint.step_cursor == {"done": True}
    assert checkpoint.source_cursor == {"index": 2}
    assert checkpoint.item["key"] == "2"
    assert "first" in checkpoint.item["properties"]

    first_again = RecordingStep("first")
    second_again = RecordingStep("second")
    source = ListSource(_records())
    resumed = Chain("mid", source, **dirs).add_step(first_again).add_step(second_again)
    await resumed.run()

    # "first" is retried with its own cursor, then the source continues after item 2
    assert first_again.calls == [("2", {"done": True}), ("3", {})]
    assert [key for key, _ in second_again.calls] == ["2", "3"]
    assert source.started_at == [2]

    results = _read(resumed.results.path)
    assert sorted(results) == ["1", "2", "3"]
    assert results["2"]["properties"]["second"]["seen"] == ["first"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_restart_discards_previous_state(dirs):
    chain = Chain("restart", ListSource(_records()), **dirs).add_step(RecordingStep("only"))
    await chain.run()

    step = RecordingStep("only")
    again = Chain("restart", ListSource(_records()), **dirs).add_step(step)
    summary = await again.run(restart=True)

    assert summary.resumed is False
    assert len(step.calls) == 3


@pytest.mark.unit
def test_duplicate_step_name_rejected(dirs):
    chain = Chain("dupes", ListSource([]), **dirs).add_step(RecordingStep("x"))
    with pytest.raises(ChainConfigError, match="Duplicate"):
        chain.add_step(RecordingStep("x"))


@pytest.mark.unit
def test_invalid_chain_name_rejected(dirs):
    with pytest.raises(ChainConfigError):
        Chain("../escape", ListSource([]), **dirs)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_checkpoint_for_unknown_step_is_config_error(dirs):
    store = CheckpointStore(dirs["checkpoint_dir"] / "checkpoint_renamed.json", chain_name="renamed")
    store.write(
        MidItem(
            source_cursor={"index": 1},
            step_name="gone",
            step_cursor={},
            item=Item(key="1", record={"id": 1}).snapshot(),
        )
    )

    chain = Chain("renamed", ListSource(_records()), **dirs).add_step(RecordingStep("only"))
    with pytest.raises(ChainConfigError, match="gone"):
        await chain.run()


class _NoCursorStep(Step):
    async def apply(self, item, cursor=None):
        return StepOutcome(item=item)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_last_step_writes_no_mid_item_checkpoint(dirs, monkeypatch):
    chain = Chain("last", ListSource(_records()[:1]), **dirs).add_step(_NoCursorStep("a")).add_step(_NoCursorStep("b"))
    written = []
    original = chain.checkpoints.write

    def spy(checkpoint):
        written.append(checkpoint)
        original(checkpoint)

    monkeypatch.setattr(chain.checkpoints, "write", spy)
    await chain.run()

    assert [type(c).__name__ for c in written] == ["MidItem", "AtItemBoundary"]
    assert written[0].step_name == "a"


class TagStep(Step):
    """Deterministic step: the recorded value depends only on the item."""

    def __init__(self, name: str, field: Optional[str] = None, fail_on: Optional[str] = None):
        super().__init__(name)
        self.field = field
        self.fail_on = fail_on

    async def apply(self, item, cursor=None):
        if self.fail_on is not None and item.key == self.fail_on:
            raise RuntimeError(f"{self.name} crashed")
        valid = True if self.field is None else bool(item.record.get(self.field))
        self.record(item, {"valid": valid, "full_name": item.record["full_name"]})
        return self.outcome(item, valid, {"done": True})


def _unsorted_records() -> List[Dict[str, Any]]:
    return [
        {"id": 50, "full_name": "z/fifty", "good": True},
        {"id": 7, "full_name": "y/seven", "good": False},
        {"id": 31, "full_name": "x/thirty-one", "good": True},
        {"id": 2, "full_name": "w/two", "good": True},
        {"id": 19, "full_name": "v/nineteen", "good": False},
    ]


async def _run_tagged(name: str, source: ItemSource, fail_on: Optional[str] = None, **dirs):
    chain = Chain(name, source, **dirs)
    chain.add_step(TagStep("gate", field="good")).add_step(TagStep("tag", fail_on=fail_on))
    await chain.run()
    return chain


@pytest.mark.unit
@pytest.mark.asyncio
async def test_results_follow_source_order(dirs):
    chain = await _run_tagged("ordered", ListSource(_unsorted_records()), **dirs)

    assert list(_read(chain.results.path)) == ["50", "31", "2"]


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("interruption", ["step", "source"])
async def test_interrupted_run_resumes_to_same_results(tmp_path, interruption):
    clean = await _run_tagged(
        "resumable",
        ListSource(_unsorted_records()),
        output_dir=tmp_path / "clean_out",
        checkpoint_dir=tmp_path / "clean_cp",
    )
    expected = _read(clean.results.path)

    dirs = {"output_dir": tmp_path / "out", "checkpoint_dir": tmp_path / "cp"}
    if interruption == "step":
        with pytest.raises(RuntimeError, match="tag crashed"):
            await _run_tagged("resumable", ListSource(_unsorted_records()), fail_on="2", **dirs)
    else:
        with pytest.raises(RuntimeError, match="source went away"):
            await _run_tagged("resumable", ListSource(_unsorted_records(), fail_at=3), **dirs)

    partial = _read(dirs["output_dir"] / "results_resumable.json")
    assert list(partial) == ["50", "31"]

    resumed = await _run_tagged("resumable", ListSource(_unsorted_records()), **dirs)
    results = _read(resumed.results.path)

    assert list(results) == ["50", "31", "2"]
    assert results == expected

    # a further run over a finished checkpoint changes nothing
    await _run_tagged("resumable", ListSource(_unsorted_records()), **dirs)
    assert _read(resumed.results.path) == expected
