#!/usr/bin/env python3
"""File utility helpers shared across tooling and tests."""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any


def hash_file_sha256(path: Path, chunk_size: int = 8192) -> str:
    """Compute SHA256 hash of a file."""
    hasher = hashlib.sha256()
    with open(path, "rb") as file_handle:
        for chunk in iter(lambda: file_handle.read(chunk_size), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def hash_text_sha256(text: str) -> str:
    """Compute SHA256 hex digest of a UTF-8 string."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def fsync_directory(path: Path) -> None:
    """Flush a directory entry so a preceding rename survives a crash."""
    dir_fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


def atomic_write_text(path: Path, content: str, mode: int = 0o644) -> None:
    """Atomic write with temp+fsync+rename pattern.

    The temp file is created in the target directory so the rename stays on
    one filesystem. Readers see either the old file or the new one, never a
    partial write.

    Args:
        path: Target file path.
        content: Text to write.
        mode: Permission bits applied to the file before it is renamed into
            place (0o600 for key material).
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(
        suffix=".tmp",
        prefix=f".{path.name}_",
        dir=path.parent,
    )

    try:
        os.fchmod(fd, mode)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        os.replace(temp_path, path)
        fsync_directory(path.parent)

    except Exception:
        # Clean up temp file on failure
        if Path(temp_path).exists():
            Path(temp_path).unlink()
        raise


def atomic_write_json(path: Path, data: dict[str, Any], mode: int = 0o644) -> None:
    """Serialize data as indented JSON and write it atomically."""
    atomic_write_text(path, json.dumps(data, indent=2, sort_keys=True, default=str) + "\n", mode)
