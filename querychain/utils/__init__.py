"""
Utility Functions
=================
Shell execution, filesystem walking, locked JSON I/O and schema validation.
"""

from .shell import CommandResult, run_shell
from .filesystem import (
    walk_files,
    filter_by_extension,
    filter_by_ancestors,
    exclude_ancestors,
    count_lines,
)
from .json_io import write_json_atomic, read_json_object

__all__ = [
    "CommandResult",
    "run_shell",
    "walk_files",
    "filter_by_extension",
    "filter_by_ancestors",
    "exclude_ancestors",
    "count_lines",
    "write_json_atomic",
    "read_json_object",
]
