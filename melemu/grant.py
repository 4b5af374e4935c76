"""Memory grant descriptors and the DMA lock calls that resolve them."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import ClassVar, Iterable

from .log import LogLevel, log
from .printf import cprintf

__all__ = ["GrantFlags", "GrantDescriptor", "DmaLockParams", "GrantTable",
           "dma_unlock"]

_DESCRIPTOR = struct.Struct("<5I")
_DMA_LOCK = struct.Struct("<HBB12I")

DMA_LOCK_REF = 0x42
DMA_LOCK_PAR7 = 0x37


class GrantFlags(enum.IntFlag):
    """Flags of a grant descriptor."""

    NONE = 0
    EXISTS = 1
    FIELD1_USED = 2
    BY_PID = 4
    FLAG1 = 8
    FLAG2 = 16


@dataclass
class GrantDescriptor:
    """One entry of the grant list shared by the running module."""

    flags: int = 0
    buffer: int = 0
    size: int = 0
    segment: int = 0
    obj: int = 0

    SIZE: ClassVar[int] = _DESCRIPTOR.size

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> "GrantDescriptor":
        """Decode a descriptor from its packed little-endian form."""
        return cls(*_DESCRIPTOR.unpack_from(data, offset))

    @classmethod
    def unpack_all(cls, data: bytes) -> list["GrantDescriptor"]:
        """Decode every whole descriptor in ``data``."""
        count = len(data) // _DESCRIPTOR.size
        return [cls.from_bytes(data, i * _DESCRIPTOR.size) for i in range(count)]

    def to_bytes(self) -> bytes:
        return _DESCRIPTOR.pack(self.flags & 0xFFFFFFFF, self.buffer & 0xFFFFFFFF,
                                self.size & 0xFFFFFFFF, self.segment & 0xFFFFFFFF,
                                self.obj & 0xFFFFFFFF)


@dataclass
class DmaLockParams:
    """Parameter block of the extended DMA lock call."""

    tid: int = 0
    par0a: int = 0
    par0b: int = 0
    grant: int = 0
    par2: int = 0
    address_out: int = 0
    par4: int = 0
    par5: int = 0
    par6: int = 0
    par7: int = 0
    size: int = 0
    par9: int = 0
    parA: int = 0
    parB: int = 0
    ref_out: int = 0

    SIZE: ClassVar[int] = _DMA_LOCK.size

    @classmethod
    def from_bytes(cls, data: bytes) -> "DmaLockParams":
        if len(data) < _DMA_LOCK.size:
            raise ValueError(f"DMA lock parameters need {_DMA_LOCK.size} bytes, got {len(data)}")
        return cls(*_DMA_LOCK.unpack_from(data))

    def to_bytes(self) -> bytes:
        return _DMA_LOCK.pack(
            self.tid & 0xFFFF, self.par0a & 0xFF, self.par0b & 0xFF,
            *(v & 0xFFFFFFFF for v in (
                self.grant, self.par2, self.address_out, self.par4, self.par5,
                self.par6, self.par7, self.size, self.par9, self.parA,
                self.parB, self.ref_out)))


class GrantTable:
    """The grant list most recently synchronised by the module."""

    def __init__(self) -> None:
        self.descriptors: list[GrantDescriptor] = []

    def __len__(self) -> int:
        return len(self.descriptors)

    def sync(self, descriptors: Iterable[GrantDescriptor]) -> int:
        """Replace the grant list; returns the call status."""
        self.descriptors = list(descriptors)
        log(LogLevel.DEBUG, "krnl", "sys_mg_synclist( %i entries )", len(self.descriptors))
        return 0

    def dump(self) -> list[str]:
        """Print every existing grant and return the printed lines."""
        lines = []
        for index, desc in enumerate(self.descriptors):
            if not desc.flags & GrantFlags.EXISTS:
                continue
            line = "[grnt] g:%i hnd:%i buf: 0x%08x size:0x%08x seg:%04x " % (
                index, desc.obj, desc.buffer, desc.size, desc.segment)
            line += "F1 " if desc.flags & GrantFlags.FIELD1_USED else "   "
            line += "PID " if desc.flags & GrantFlags.BY_PID else "    "
            line += "FL1 " if desc.flags & GrantFlags.FLAG1 else "    "
            line += "FL2" if desc.flags & GrantFlags.FLAG2 else "   "
            cprintf("%s\n", line)
            lines.append(line)
        return lines

    def dma_lock_ex(self, par: DmaLockParams) -> int:
        """Resolve the grant named in ``par`` into its buffer address."""
        if not 0 <= par.grant < len(self.descriptors):
            raise IndexError(f"grant {par.grant} is not in the grant list")
        entry = self.descriptors[par.grant]
        log(LogLevel.TRACE, "krnl", "sys_dma_lock_ex( tid=0x%04x, grant=%i, size=0x%08x )",
            par.tid, par.grant, par.size)
        par.ref_out = DMA_LOCK_REF
        par.address_out = entry.buffer
        par.par7 = DMA_LOCK_PAR7
        return 0


def dma_unlock(handle: int) -> int:
    """Release a DMA lock; nothing is held, so this always succeeds."""
    log(LogLevel.TRACE, "krnl", "sys_dma_unlock(0x%08x)", handle & 0xFFFFFFFF)
    return 0