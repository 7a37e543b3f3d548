"""Shell command steps.

Command failures never raise: run_shell hands back a CommandResult and the
caller's condition turns it into a validity flag. The default condition is
"the command ran and exited with 0".
"""

from __future__ import annotations

import re
import shlex
import string
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Dict, List, Optional, Union

from loguru import logger

from querychain.pipeline.models import Item, StepOutcome
from querychain.steps.base import Step
from querychain.utils.shell import CommandResult, run_shell

CommandCondition = Callable[[CommandResult], bool]
CommandSource = Union[str, Callable[[Item], str]]


def no_execution_error(result: CommandResult) -> bool:
    return result.error is None


def stdout_matches(pattern: str) -> CommandCondition:
    """Condition: no execution error and stdout matches the regex."""
    compiled = re.compile(pattern, re.MULTILINE)

    def condition(result: CommandResult) -> bool:
        return result.error is None and compiled.search(result.stdout) is not None

    return condition


_TEMPLATE_FIELD_RE = re.compile(r"^[A-Za-z_]\w*(\.\w+|\[[^\]]+\])*$")


class _ShellQuotingFormatter(string.Formatter):
    """str.format that shell-quotes every substituted value."""

    def format_field(self, value: Any, format_spec: str) -> str:
        return shlex.quote(super().format_field(value, format_spec))


def _check_template(template: str) -> None:
    try:
        fields = [field for _, field, _, _ in string.Formatter().parse(template) if field is not None]
    except ValueError as e:
        raise ValueError(
            f"Command template {template!r} is malformed ({e}); write literal braces as '{{{{' and '}}}}'"
        ) from e
    for field in fields:
        if not _TEMPLATE_FIELD_RE.match(field):
            raise ValueError(
                f"Command template {template!r} has invalid field {{{field}}}; "
                "write literal braces as '{{' and '}}'"
            )


def command_template(template: str, clone_property: str = "clone") -> Callable[[Item], str]:
    """Build a command from a str.format template over the item.

    Available fields: every record field, `key`, `name` and `path` (the local
    checkout recorded by the clone step, empty when not cloned). Substituted
    values are shell-quoted, so a field is always a single word to the shell.
    Literal braces are written `{{` and `}}`, e.g. "awk '{{print $1}}' {path}/go.mod".

    Raises:
        ValueError: When the template is malformed; unknown fields raise when
            the command is built for an item.
    """
    _check_template(template)
    formatter = _ShellQuotingFormatter()

    def build(item: Item) -> str:
        fields: Dict[str, Any] = dict(item.record)
        path = item.property_path(clone_property)
        fields["key"] = item.key
        fields["name"] = item.name
        fields["path"] = str(path) if path else ""
        try:
            return formatter.vformat(template, (), fields)
        except (KeyError, IndexError, AttributeError) as e:
            raise ValueError(f"Command template {template!r} references unknown field {e}") from e

    return build


class CommandStep(Step):
    """Runs a command derived from the item.

    Writes `{valid, returncode}`; the item stops when the condition fails and
    the step is not optional.
    """

    def __init__(
        self,
        command: CommandSource,
        name: str,
        condition: Optional[CommandCondition] = None,
        optional: bool = False,
        cwd: Optional[Union[str, Path]] = None,
    ):
        super().__init__(name, optional)
        self.command = command
        self.condition = condition or no_execution_error
        self.cwd = cwd

    def build_command(self, item: Item) -> str:
        if callable(self.command):
            return self.command(item)
        return self.command

    async def apply(self, item: Item, cursor: Optional[Dict[str, Any]] = None) -> StepOutcome:
        cursor = cursor or {}

        if isinstance(cursor.get("valid"), bool):
            valid = cursor["valid"]
            returncode = cursor.get("returncode")
        else:
            command = self.build_command(item)
            logger.info(f"\tExecuting: {command}")
            result = await run_shell(command, cwd=self.cwd)
            valid = bool(self.condition(result))
            returncode = result.returncode
            if result.error is not None:
                logger.debug(f"\t{result.error}: {result.stderr.strip()[:500]}")

        self.record(item, {"valid": valid, "returncode": returncode})
        return self.outcome(item, valid, {"valid": valid, "returncode": returncode})


def file_folder(root: Path, file_path: str) -> Path:
    """Folder of a repository-relative file path inside a local checkout."""
    relative = PurePosixPath(file_path.lstrip("/")).parent
    return (root / Path(*relative.parts)).resolve() if relative.parts else root.resolve()


class CommandOnFilesStep(Step):
    """Runs a command in the folder of every file a prior existence step found.

    Each distinct folder runs once. Valid when at least one folder satisfies
    the condition. Writes `{valid, valid_folders}`.
    """

    def __init__(
        self,
        files_property: str,
        command: str,
        name: str,
        optional: bool = False,
        condition: Optional[CommandCondition] = None,
        clone_property: str = "clone",
    ):
        super().__init__(name, optional)
        self.files_property = files_property
        self.command = command
        self.condition = condition or no_execution_error
        self.clone_property = clone_property

    def _files(self, item: Item) -> List[Dict[str, Any]]:
        prop = item.properties.get(self.files_property)
        if not isinstance(prop, dict):
            raise ValueError(
                f"Step {self.name!r} needs property {self.files_property!r} from a file check on item {item.key}"
            )
        files = prop.get("files") or []
        return [f for f in files if isinstance(f, dict) and isinstance(f.get("path"), str)]

    async def apply(self, item: Item, cursor: Optional[Dict[str, Any]] = None) -> StepOutcome:
        cursor = cursor or {}

        if isinstance(cursor.get("valid"), bool):
            valid = cursor["valid"]
            valid_folders = list(cursor.get("valid_folders") or [])
        else:
            valid, valid_folders = await self._run(item)

        self.record(item, {"valid": valid, "valid_folders": valid_folders})
        return self.outcome(item, valid, {"valid": valid, "valid_folders": valid_folders})

    async def _run(self, item: Item) -> tuple[bool, List[str]]:
        files = self._files(item)
        root = item.property_path(self.clone_property)
        if root is None:
            logger.warning(f"\tNo local checkout for {item.name}; skipping {self.name}")
            return False, []

        valid = False
        valid_folders: List[str] = []
        visited = set()

        for f in files:
            folder = file_folder(root, f["path"])
            if folder in visited:
                continue
            visited.add(folder)

            logger.debug(f"\tExecuting in {folder}: {self.command}")
            result = await run_shell(self.command, cwd=folder)
            if self.condition(result):
                valid = True
                valid_folders.append(str(folder))

        return valid, valid_folders
