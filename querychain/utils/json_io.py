"""
JSON File I/O
=============
Locked, atomic JSON writes for the files a chain must never leave half
written (results and checkpoints).
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from filelock import FileLock, Timeout

from querychain.config import TIMEOUTS


def lock_path_for(path: Path) -> Path:
    return path.with_suffix(path.suffix + ".lock")


def write_json_atomic(
    path: Path,
    payload: Any,
    *,
    lock_timeout_seconds: int = TIMEOUTS.FILE_LOCK,
) -> None:
    """Serialize payload to path via a temp file and os.replace.

    Readers either see the previous file or the new one, never a partial write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    lock_path = lock_path_for(path)

    text = json.dumps(payload, ensure_ascii=False, indent=2, default=str) + "\n"

    try:
        with FileLock(lock_path, timeout=lock_timeout_seconds):
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
    except Timeout as e:
        raise TimeoutError(
            f"Timed out acquiring lock {lock_path} after {lock_timeout_seconds}s"
        ) from e


def read_json_object(path: Path) -> Optional[Dict[str, Any]]:
    """Read a JSON object from path.

    Returns:
        The decoded object, or None when the file does not exist.

    Raises:
        ValueError: When the file is not valid JSON or not a JSON object.
    """
    if not path.exists():
        return None

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Invalid JSON in {path}: {type(e).__name__}: {e}")

    if not isinstance(payload, dict):
        raise ValueError(f"Expected a JSON object in {path}, got {type(payload).__name__}")
    return payload


def remove_file(path: Path) -> bool:
    """Delete path (and its lock file) if present. Returns True when deleted."""
    removed = False
    if path.exists():
        path.unlink()
        removed = True
    lock_path = lock_path_for(path)
    if lock_path.exists():
        lock_path.unlink()
    return removed
