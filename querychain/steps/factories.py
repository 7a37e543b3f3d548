"""Step factories.

One function per kind of check, each returning a concrete Step ready to be
registered on a Chain. These are what QueryChain's fluent methods call.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

from querychain.github.client import GitHubClient
from querychain.steps.commands import CommandCondition, CommandOnFilesStep, CommandSource, CommandStep
from querychain.steps.github import CloneStep, CommitHistoryStep, FileExistenceStep
from querychain.steps.loc import LineCountStep
from querychain.steps.predicates import Condition, PredicateStep


def check_file(
    client: GitHubClient,
    criteria: Mapping[str, Any],
    name: str,
    optional: bool = False,
) -> FileExistenceStep:
    return FileExistenceStep(client, criteria, name, optional)


def check_commit(
    client: GitHubClient,
    criteria: Mapping[str, Any],
    name: str,
    optional: bool = False,
) -> CommitHistoryStep:
    return CommitHistoryStep(client, criteria, name, optional)


def clone(folder: Union[str, Path], name: str = "clone") -> CloneStep:
    return CloneStep(folder, name)


def check_property(condition: Condition, name: Optional[str] = None, *, index: int = 0) -> PredicateStep:
    """Predicate step; unnamed predicates get an internal name and record nothing."""
    if name:
        return PredicateStep(condition, name, record_property=True)
    return PredicateStep(condition, f"check_property_{index}", record_property=False)


def check_command(
    command: CommandSource,
    name: str,
    condition: Optional[CommandCondition] = None,
    optional: bool = False,
) -> CommandStep:
    return CommandStep(command, name, condition=condition, optional=optional)


def check_command_on_files(
    files_property: str,
    command: str,
    name: str,
    optional: bool = False,
    condition: Optional[CommandCondition] = None,
    clone_property: str = "clone",
) -> CommandOnFilesStep:
    return CommandOnFilesStep(
        files_property,
        command,
        name,
        optional=optional,
        condition=condition,
        clone_property=clone_property,
    )


def check_loc(
    parents: Sequence[str],
    extension: Union[str, Sequence[str]],
    name: str,
    threshold: int = -1,
    optional: bool = False,
    clone_property: str = "clone",
) -> LineCountStep:
    return LineCountStep(
        parents,
        extension,
        name,
        threshold=threshold,
        optional=optional,
        clone_property=clone_property,
    )


def check_loc_exclude(
    parents: Sequence[str],
    exclude: Sequence[str],
    extension: Union[str, Sequence[str]],
    name: str,
    threshold: int = -1,
    optional: bool = False,
    clone_property: str = "clone",
) -> LineCountStep:
    return LineCountStep(
        parents,
        extension,
        name,
        threshold=threshold,
        optional=optional,
        exclude=exclude,
        clone_property=clone_property,
    )
