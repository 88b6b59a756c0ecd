"""
Atomic file writes for certificate-store artifacts.

Pattern:
  1. Write to a temporary file in the destination directory
  2. Apply the requested permission bits and fsync
  3. os.replace() over the destination (atomic on POSIX filesystems)

A reader never sees a half-written PEM, and a crash mid-write leaves the
previous artifact in place.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional


def atomic_write_bytes(path: Path, content: bytes, mode: Optional[int] = None) -> None:
    """
    Atomically replace *path* with *content*.

    When *mode* is given the temp file is chmod'ed before the rename, so a
    private key is never visible with default permissions.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    # Same directory as the target so the rename stays on one filesystem
    fd, temp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))

    try:
        with os.fdopen(fd, "wb") as f:
            if mode is not None:
                os.fchmod(f.fileno(), mode)
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def atomic_write_text(path: Path, content: str, encoding: str = "utf-8", mode: Optional[int] = None) -> None:
    """Text flavour of :func:`atomic_write_bytes`."""
    atomic_write_bytes(path, content.encode(encoding), mode=mode)
