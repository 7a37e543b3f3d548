"""
Shell Execution
===============
Run a shell command string asynchronously and hand back what happened as data.

`run_shell` never raises for failures of the command itself: a non-zero exit,
a timeout or a spawn error all end up in `CommandResult.error`.
"""

from __future__ import annotations

import asyncio
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from loguru import logger

from querychain.config import CHAIN, TIMEOUTS
from querychain.utils.subprocess_env import build_minimal_subprocess_env

# Output still buffered after a kill is read for at most this long
KILL_DRAIN_SECONDS = 5.0


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a shell command."""

    error: Optional[str]
    returncode: Optional[int]
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.error is None


def _to_text(data: Optional[bytes]) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


async def _kill_process_group(proc: asyncio.subprocess.Process) -> tuple[bytes, bytes]:
    """Kill the shell and everything it spawned, then collect what was written."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        # already gone
        pass

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=KILL_DRAIN_SECONDS)
    except asyncio.TimeoutError:
        # a descendant left the group and still holds the pipes
        logger.warning(f"Output of killed process {proc.pid} not drained after {KILL_DRAIN_SECONDS}s")
        stdout, stderr = b"", b""
        await proc.wait()
    return stdout, stderr


async def run_shell(
    command: str,
    *,
    cwd: Optional[Union[str, Path]] = None,
    timeout: Optional[float] = None,
    sanitize_env: Optional[bool] = None,
) -> CommandResult:
    """Run `command` through the system shell.

    Args:
        command: Shell command string.
        cwd: Working directory; must exist.
        timeout: Seconds before the command and its children are killed. Defaults to
            TIMEOUTS.COMMAND_EXECUTION; 0 or a negative value disables it.
        sanitize_env: Override CHAIN.SANITIZE_COMMAND_ENV.

    Returns:
        CommandResult with error=None only when the command exited with 0.
    """
    if timeout is None:
        timeout = TIMEOUTS.COMMAND_EXECUTION
    if sanitize_env is None:
        sanitize_env = CHAIN.SANITIZE_COMMAND_ENV

    if cwd is not None and not Path(cwd).is_dir():
        return CommandResult(
            error=f"Working directory does not exist: {cwd}",
            returncode=None,
            stdout="",
            stderr="",
        )

    env = build_minimal_subprocess_env(sanitize_env=sanitize_env)

    try:
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=str(cwd) if cwd is not None else None,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as e:
        logger.warning(f"Failed to spawn command: {command!r}: {e}")
        return CommandResult(error=f"{type(e).__name__}: {e}", returncode=None, stdout="", stderr="")

    try:
        if timeout and timeout > 0:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        else:
            stdout, stderr = await proc.communicate()
    except asyncio.TimeoutError:
        stdout, stderr = await _kill_process_group(proc)
        logger.warning(f"Command timed out after {timeout}s: {command!r}")
        return CommandResult(
            error=f"Command timed out after {timeout}s",
            returncode=proc.returncode,
            stdout=_to_text(stdout),
            stderr=_to_text(stderr),
        )

    error = None
    if proc.returncode != 0:
        error = f"Command exited with status {proc.returncode}"

    return CommandResult(
        error=error,
        returncode=proc.returncode,
        stdout=_to_text(stdout),
        stderr=_to_text(stderr),
    )
