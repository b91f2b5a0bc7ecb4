"""
Filesystem helpers for whole-file rewrites and write-once records.

Backlogs and merged plans are rewritten with :func:`atomic_write` so readers
never observe a partial file. Spec versions use :func:`exclusive_write`, which
refuses to replace an existing file.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "exclusive_write",
    "is_within",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically replace ``path`` with ``data``.

    Writes to a temp file in the destination directory, fsyncs it and swaps it
    in with ``os.replace``. Parent directories are created as needed.
    """

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = data.encode(encoding) if isinstance(data, str) else data

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target.parent),
    )
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, target)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def exclusive_write(path: PathLike, data: str, *, encoding: str = "utf-8") -> None:
    """Create ``path`` with ``data``; raise ``FileExistsError`` if it already exists."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "x", encoding=encoding) as handle:
        handle.write(data)
        handle.flush()
        os.fsync(handle.fileno())


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if resolved ``child`` lies inside resolved ``parent``."""

    resolved_parent = Path(parent).resolve()
    resolved_child = Path(child).resolve()
    try:
        resolved_child.relative_to(resolved_parent)
    except ValueError:
        return False
    return True
