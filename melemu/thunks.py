"""Patching of relative jump thunks into loaded images."""

from __future__ import annotations

from typing import Collection, Mapping

from .log import logassert

__all__ = ["insert_thunk", "insert_thunk_rec", "install_thunks",
           "ROMLIB_THUNKS", "SYSLIB_THUNKS", "SYSLIB_RECURSIVE"]

JMP_OPCODE = 0xE9
THUNK_SIZE = 5

ROMLIB_THUNKS = ("tstamp_read", "write_seg_32", "write_seg_16", "write_seg_8",
                 "read_seg_32", "read_seg_16", "read_seg_8", "write_seg",
                 "read_seg")
SYSLIB_THUNKS = ("kernelcall", "get_tls_ptr")
SYSLIB_RECURSIVE = frozenset({"get_tls_ptr"})


def _offset(image: bytearray, base: int, address: int) -> int:
    off = address - base
    if off < 0 or off + THUNK_SIZE > len(image):
        raise ValueError(f"address 0x{address:08x} is outside the image")
    return off


def insert_thunk(image: bytearray, base: int, wr: int, target: int) -> None:
    """Write a relative jump at ``wr`` that lands on ``target``."""
    off = _offset(image, base, wr)
    rel = (target - wr - THUNK_SIZE) & 0xFFFFFFFF
    image[off] = JMP_OPCODE
    image[off + 1:off + THUNK_SIZE] = rel.to_bytes(4, "little")


def insert_thunk_rec(image: bytearray, base: int, wr: int, target: int) -> None:
    """Follow the jump at ``wr`` and place the thunk at its destination."""
    off = _offset(image, base, wr)
    logassert(image[off] == JMP_OPCODE, "romlib",
              "Could not place recursive thunk on non jmp")
    operand = int.from_bytes(image[off + 1:off + THUNK_SIZE], "little")
    destination = (operand + wr + THUNK_SIZE) & 0xFFFFFFFF
    insert_thunk(image, base, destination, target)


def install_thunks(image: bytearray, base: int, section, targets: Mapping[str, int],
                   recursive: bool | Collection[str] = False) -> list[str]:
    """Place a thunk for every name in ``targets`` whose address ``section`` gives.

    ``recursive`` is either a flag for all names or the names to follow
    through an existing jump. Returns the names that were installed.
    """
    installed = []
    for name, target in targets.items():
        address = section.find_int(name, 32)
        if address is None:
            continue
        follow = recursive if isinstance(recursive, bool) else name in recursive
        if follow:
            insert_thunk_rec(image, base, address, target)
        else:
            insert_thunk(image, base, address, target)
        installed.append(name)
    return installed