"""Chain steps and the factories that build them."""

from .base import Step
from .commands import CommandOnFilesStep, CommandStep, no_execution_error, stdout_matches
from .github import CloneStep, CommitHistoryStep, FileExistenceStep
from .loc import LineCountStep
from .predicates import PredicateStep
from .factories import (
    check_command,
    check_command_on_files,
    check_commit,
    check_file,
    check_loc,
    check_loc_exclude,
    check_property,
    clone,
)

__all__ = [
    "Step",
    "CommandStep",
    "CommandOnFilesStep",
    "CloneStep",
    "CommitHistoryStep",
    "FileExistenceStep",
    "LineCountStep",
    "PredicateStep",
    "no_execution_error",
    "stdout_matches",
    "check_command",
    "check_command_on_files",
    "check_commit",
    "check_file",
    "check_loc",
    "check_loc_exclude",
    "check_property",
    "clone",
]
