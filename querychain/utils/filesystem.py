"""
Filesystem Helpers
==================
Walking a local checkout, filtering paths and counting lines of code.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, List, Sequence, Union

# Never descended into while walking a checkout
SKIPPED_DIRS = {".git", ".hg", ".svn"}

PathLike = Union[str, Path]


def walk_files(root: PathLike) -> List[Path]:
    """Recursively list files under root, sorted for a deterministic walk."""
    root_path = Path(root)
    if not root_path.is_dir():
        return []

    files: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(root_path):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIPPED_DIRS)
        for filename in sorted(filenames):
            p = Path(dirpath) / filename
            if p.is_file():
                files.append(p)
    return files


def filter_by_extension(paths: Iterable[Path], extension: Union[str, Sequence[str]]) -> List[Path]:
    """Keep paths whose name ends with the extension (or any of them)."""
    if isinstance(extension, str):
        suffixes = (extension,)
    else:
        suffixes = tuple(extension)
    return [p for p in paths if p.name.endswith(suffixes)]


def _ancestor_names(path: Path, root: Path) -> List[str]:
    try:
        rel = path.relative_to(root)
    except ValueError:
        rel = path
    return list(rel.parts[:-1])


def filter_by_ancestors(paths: Iterable[Path], root: PathLike, parents: Sequence[str]) -> List[Path]:
    """Keep paths having at least one ancestor folder (below root) named in parents.

    An empty `parents` keeps every path.
    """
    root_path = Path(root)
    paths = list(paths)
    if not parents:
        return paths
    wanted = set(parents)
    return [p for p in paths if wanted.intersection(_ancestor_names(p, root_path))]


def exclude_ancestors(
    paths: Iterable[Path],
    root: PathLike,
    parents: Sequence[str],
    exclude: Sequence[str],
) -> List[Path]:
    """Apply filter_by_ancestors, then drop paths with any ancestor named in exclude."""
    root_path = Path(root)
    kept = filter_by_ancestors(paths, root_path, parents)
    banned = set(exclude)
    if not banned:
        return kept
    return [p for p in kept if not banned.intersection(_ancestor_names(p, root_path))]


def count_lines(path: PathLike) -> int:
    """Count non-blank lines of a text file. Unreadable files count as 0."""
    count = 0
    try:
        with open(path, "r", encoding="utf-8", errors="ignore") as f:
            for line in f:
                if line.strip():
                    count += 1
    except OSError:
        return 0
    return count
