"""
Repository Cloning
==================
Materialize a repository into its own subfolder with a shallow `git clone`.
"""

from __future__ import annotations

import re
import shutil
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from loguru import logger

from querychain.config import TIMEOUTS
from querychain.utils.shell import run_shell

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class CloneResult:
    path: Path
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def clone_dirname(record: Dict[str, Any]) -> str:
    """Folder name for a repository: owner__name, filesystem safe."""
    full_name = str(record.get("full_name") or record.get("name") or record.get("id") or "repository")
    name = full_name.replace("/", "__")
    name = _UNSAFE_CHARS_RE.sub("_", name).strip("._")
    return name or "repository"


def clone_url(record: Dict[str, Any]) -> Optional[str]:
    url = record.get("clone_url")
    if isinstance(url, str) and url:
        return url
    full_name = record.get("full_name")
    if isinstance(full_name, str) and full_name:
        return f"https://github.com/{full_name}.git"
    return None


async def clone_repository(
    record: Dict[str, Any],
    folder: Union[str, Path],
    *,
    depth: Optional[int] = 1,
    timeout: Optional[float] = None,
) -> CloneResult:
    """Clone the repository described by record under folder.

    An existing checkout in the target folder is reused as is.

    Returns:
        CloneResult; `error` carries the failure instead of raising.
    """
    target = (Path(folder) / clone_dirname(record)).resolve()

    if (target / ".git").is_dir():
        logger.debug(f"Reusing existing checkout {target}")
        return CloneResult(path=target)

    url = clone_url(record)
    if url is None:
        return CloneResult(path=target, error="Record has no clone_url or full_name")

    if target.exists():
        # leftovers of an interrupted clone
        shutil.rmtree(target)
    target.parent.mkdir(parents=True, exist_ok=True)

    args = ["git", "clone", "--quiet"]
    if depth:
        args += ["--depth", str(int(depth))]
    args += [url, str(target)]
    command = " ".join(shlex.quote(a) for a in args)

    result = await run_shell(
        command,
        timeout=TIMEOUTS.CLONE if timeout is None else timeout,
        sanitize_env=True,
    )
    if result.error is not None:
        detail = result.stderr.strip().splitlines()[-1:] or [""]
        message = f"{result.error}: {detail[0]}".rstrip(": ")
        logger.warning(f"Clone of {url} failed: {message}")
        return CloneResult(path=target, error=message)

    return CloneResult(path=target)
