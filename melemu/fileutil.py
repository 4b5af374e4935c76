"""Small file helpers."""

from __future__ import annotations

import io
import os
from typing import BinaryIO

from .log import fatal

__all__ = ["file_size", "read_full_file"]


def file_size(fileobj: BinaryIO) -> int:
    """Return the size of an open file without moving its position."""
    position = fileobj.tell()
    size = fileobj.seek(0, io.SEEK_END)
    fileobj.seek(position, io.SEEK_SET)
    return size


def read_full_file(path: str | os.PathLike) -> bytes:
    """Return the whole contents of ``path``; a failure is fatal."""
    try:
        with open(path, "rb") as handle:
            return handle.read()
    except OSError as exc:
        fatal("loader", "Could not open file: %s\n", exc.strerror or str(exc))
        raise