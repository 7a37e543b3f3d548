"""
QueryChain builder
==================
Fluent front end over Chain: pick a source, register steps, run.

    chain = (
        QueryChain("python_tools", {"type": "query", "query": {"language": "python", "stars": ">100"}})
        .check_file({"filename": "setup.py"}, "setup")
        .clone("./tmp")
        .check_loc(["src"], ".py", "loc", threshold=1000)
    )
    await chain.run()

Chains can also be described as JSON and built with
`query_chain_from_definition` (see chain_definition.schema.json).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from loguru import logger

from querychain.config import CHAIN
from querychain.github.client import GitHubClient
from querychain.pipeline.chain import Chain, ItemCallback
from querychain.pipeline.errors import ChainConfigError
from querychain.pipeline.models import ChainRunSummary
from querychain.pipeline.sources import build_source
from querychain.steps import factories
from querychain.steps.commands import (
    CommandCondition,
    CommandSource,
    command_template,
    stdout_matches,
)
from querychain.steps.predicates import Condition, field_condition
from querychain.utils.schema_validation import validate_chain_definition


class QueryChain:
    """Chain of checks over GitHub repositories, built one method call at a time."""

    def __init__(
        self,
        name: str,
        params: Mapping[str, Any],
        *,
        client: Optional[GitHubClient] = None,
        output_dir: Optional[Union[str, Path]] = None,
        checkpoint_dir: Optional[Union[str, Path]] = None,
    ):
        self._owns_client = client is None
        self.client = client if client is not None else GitHubClient()
        self.params = dict(params)

        source = build_source(self.params, self.client)
        self.chain = Chain(name, source, output_dir=output_dir, checkpoint_dir=checkpoint_dir)

        self._clone_property = "clone"
        self._unnamed_predicates = 0

    @property
    def name(self) -> str:
        return self.chain.name

    def check_file(self, criteria: Mapping[str, Any], name: str, optional: bool = False) -> "QueryChain":
        self.chain.add_step(factories.check_file(self.client, criteria, name, optional))
        return self

    def check_commit(self, criteria: Mapping[str, Any], name: str, optional: bool = False) -> "QueryChain":
        self.chain.add_step(factories.check_commit(self.client, criteria, name, optional))
        return self

    def clone(self, folder: Optional[Union[str, Path]] = None, name: str = "clone") -> "QueryChain":
        """Clone every surviving repository; later filesystem steps use this checkout."""
        self.chain.add_step(factories.clone(folder if folder is not None else CHAIN.CLONE_DIR, name))
        self._clone_property = name
        return self

    def check_property(self, condition: Condition, name: Optional[str] = None) -> "QueryChain":
        self.chain.add_step(factories.check_property(condition, name, index=self._unnamed_predicates))
        if not name:
            self._unnamed_predicates += 1
        return self

    def check_command(
        self,
        command: CommandSource,
        name: str,
        condition: Optional[CommandCondition] = None,
        optional: bool = False,
    ) -> "QueryChain":
        self.chain.add_step(factories.check_command(command, name, condition, optional))
        return self

    def check_command_on_files(
        self,
        files_property: str,
        command: str,
        name: str,
        optional: bool = False,
        condition: Optional[CommandCondition] = None,
    ) -> "QueryChain":
        self.chain.add_step(
            factories.check_command_on_files(
                files_property,
                command,
                name,
                optional=optional,
                condition=condition,
                clone_property=self._clone_property,
            )
        )
        return self

    def check_loc(
        self,
        parents: Sequence[str],
        extension: Union[str, Sequence[str]],
        name: str,
        threshold: int = -1,
        optional: bool = False,
    ) -> "QueryChain":
        self.chain.add_step(
            factories.check_loc(
                parents,
                extension,
                name,
                threshold=threshold,
                optional=optional,
                clone_property=self._clone_property,
            )
        )
        return self

    def check_loc_exclude(
        self,
        parents: Sequence[str],
        exclude: Sequence[str],
        extension: Union[str, Sequence[str]],
        name: str,
        threshold: int = -1,
        optional: bool = False,
    ) -> "QueryChain":
        self.chain.add_step(
            factories.check_loc_exclude(
                parents,
                exclude,
                extension,
                name,
                threshold=threshold,
                optional=optional,
                clone_property=self._clone_property,
            )
        )
        return self

    async def run(self, callback: Optional[ItemCallback] = None, restart: bool = False) -> ChainRunSummary:
        try:
            return await self.chain.run(callback, restart=restart)
        finally:
            if self._owns_client:
                await self.client.close()


def query_chain(name: str, params: Mapping[str, Any], **kwargs: Any) -> QueryChain:
    return QueryChain(name, params, **kwargs)


def load_chain_definition(path: Union[str, Path]) -> Dict[str, Any]:
    """Read and validate a JSON chain definition.

    Raises:
        ChainConfigError: When the file is unreadable or fails validation.
    """
    path = Path(path)
    try:
        definition = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ChainConfigError(f"Cannot read chain definition {path}: {type(e).__name__}: {e}") from e

    try:
        validate_chain_definition(definition)
    except ValueError as e:
        raise ChainConfigError(f"Invalid chain definition {path}: {e}") from e
    return definition


def _required(step_def: Mapping[str, Any], key: str, step_type: str) -> Any:
    if key not in step_def:
        raise ChainConfigError(f"Step {step_type!r} needs {key!r}")
    return step_def[key]


def _command_condition(step_def: Mapping[str, Any]) -> Optional[CommandCondition]:
    pattern = step_def.get("expect_stdout")
    return stdout_matches(pattern) if pattern else None


def _property_condition(step_def: Mapping[str, Any]) -> Condition:
    field = _required(step_def, "field", "check_property")
    if "min" in step_def:
        return field_condition(field, minimum=step_def["min"])
    if "equals" in step_def:
        return field_condition(field, equals=step_def["equals"])
    raise ChainConfigError("Step 'check_property' needs 'equals' or 'min'")


def _add_step(chain: QueryChain, step_def: Mapping[str, Any]) -> None:
    step_type = step_def.get("type")
    optional = bool(step_def.get("optional", False))

    if step_type == "check_file":
        chain.check_file(_required(step_def, "criteria", step_type), _required(step_def, "name", step_type), optional)
    elif step_type == "check_commit":
        chain.check_commit(_required(step_def, "criteria", step_type), _required(step_def, "name", step_type), optional)
    elif step_type == "clone":
        chain.clone(step_def.get("folder"), step_def.get("name") or "clone")
    elif step_type == "check_property":
        chain.check_property(_property_condition(step_def), step_def.get("name"))
    elif step_type == "check_command":
        try:
            build = command_template(_required(step_def, "command", step_type), chain._clone_property)
        except ValueError as e:
            raise ChainConfigError(f"Step {step_def.get('name')!r}: {e}") from e
        chain.check_command(
            build,
            _required(step_def, "name", step_type),
            _command_condition(step_def),
            optional,
        )
    elif step_type == "check_command_on_files":
        chain.check_command_on_files(
            _required(step_def, "files_property", step_type),
            _required(step_def, "command", step_type),
            _required(step_def, "name", step_type),
            optional,
            _command_condition(step_def),
        )
    elif step_type == "check_loc":
        chain.check_loc(
            step_def.get("parents") or [],
            _required(step_def, "extension", step_type),
            _required(step_def, "name", step_type),
            int(step_def.get("threshold", -1)),
            optional,
        )
    elif step_type == "check_loc_exclude":
        chain.check_loc_exclude(
            step_def.get("parents") or [],
            step_def.get("exclude") or [],
            _required(step_def, "extension", step_type),
            _required(step_def, "name", step_type),
            int(step_def.get("threshold", -1)),
            optional,
        )
    else:
        raise ChainConfigError(f"Unknown step type: {step_type!r}")


def query_chain_from_definition(
    definition: Mapping[str, Any],
    *,
    client: Optional[GitHubClient] = None,
    output_dir: Optional[Union[str, Path]] = None,
    checkpoint_dir: Optional[Union[str, Path]] = None,
) -> QueryChain:
    """Build a QueryChain from a definition mapping (as read by load_chain_definition)."""
    try:
        validate_chain_definition(dict(definition))
    except ValueError as e:
        raise ChainConfigError(f"Invalid chain definition: {e}") from e

    chain = QueryChain(
        definition["name"],
        definition["source"],
        client=client,
        output_dir=output_dir,
        checkpoint_dir=checkpoint_dir,
    )
    for step_def in definition["steps"]:
        _add_step(chain, step_def)

    logger.debug(f"Built chain {chain.name}: {[s.name for s in chain.chain.steps]}")
    return chain
