"""Segment addressed memory access for the running module and the ROM library calls built on it."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable

from .devreg import DeviceInstance
from .log import LogLevel, fatal, log
from .module import Segment

__all__ = ["FrontSideBus", "SegmentFault", "SegmentMemory", "RomLib",
           "dma_write", "dma_read", "TSTAMP_VALUE"]

TSTAMP_VALUE = 0x7EADCAFEFEED1337
_LDT_SELECTOR = 4
_SEG_0x3B_PRESET = 0xDEADBEEF


@dataclass(eq=False)
class FrontSideBus:
    """Connections between the CPU and the system agent.

    Downstream calls take the system agent device first; memory reads
    return the bytes read.
    """

    cpu: DeviceInstance | None = None
    sa: DeviceInstance | None = None
    sa_mem_write: Callable[[Any, int, bytes], None] | None = None
    sa_mem_read: Callable[[Any, int, int], bytes] | None = None
    sa_io_write: Callable[[Any, int, bytes], None] | None = None
    sa_io_read: Callable[[Any, int, int], bytes] | None = None
    mia_mem_write: Callable[[Any, int, bytes], None] | None = None
    mia_mem_read: Callable[[Any, int, int], bytes] | None = None
    mia_legacy_wire: Callable[[Any, int, int], None] | None = None


class SegmentFault(Exception):
    """Raised when a segment access falls outside the module's segments."""


def dma_write(address: int, data: bytes) -> None:
    """The old DMA interface is gone; any use of it is fatal."""
    fatal("krnl", "Using old DMA framework!")


def dma_read(address: int, count: int) -> bytes:
    """The old DMA interface is gone; any use of it is fatal."""
    fatal("krnl", "Using old DMA framework!")
    return b""


class SegmentMemory:
    """Resolves module segment selectors and forwards accesses over the bus."""

    def __init__(self, fsb: FrontSideBus | None = None,
                 segments: Iterable[Segment] = ()) -> None:
        self.fsb = fsb
        self.segments = list(segments)

    def deref(self, seg: int, offset: int, count: int) -> int | None:
        """Return the linear address of a segment access.

        Only local (LDT) selectors are resolved; others give None.
        """
        if seg & _LDT_SELECTOR != _LDT_SELECTOR:
            return None
        index = seg >> 3
        if index >= len(self.segments):
            raise SegmentFault(f"selector 0x{seg:04x} names no segment")
        segment = self.segments[index]
        if offset + count > segment.limit:
            raise SegmentFault(
                f"access at 0x{offset:x} of {count} bytes exceeds segment limit "
                f"0x{segment.limit:x}")
        return segment.base + offset

    def _bus(self) -> FrontSideBus:
        if self.fsb is None:
            raise RuntimeError("no front side bus attached")
        return self.fsb

    def write_seg(self, seg: int, offset: int, data: bytes) -> None:
        """Write ``data`` at ``offset`` in segment ``seg``."""
        data = bytes(data)
        lad = self.deref(seg, offset, len(data))
        if lad is None:
            log(LogLevel.WARN, "krnl", "Write through unsupported selector %04x", seg)
            return
        log(LogLevel.TRACE, "krnl", "Write %08X count %i", lad, len(data))
        bus = self._bus()
        bus.sa_mem_write(bus.sa, lad, data)

    def read_seg(self, seg: int, offset: int, count: int) -> bytes:
        """Read ``count`` bytes at ``offset`` in segment ``seg``."""
        lad = self.deref(seg, offset, count)
        if lad is None:
            log(LogLevel.WARN, "krnl", "Read through unsupported selector %04x", seg)
            return b""
        log(LogLevel.TRACE, "krnl", "read  %08X count %i", lad, count)
        bus = self._bus()
        return bytes(bus.sa_mem_read(bus.sa, lad, count))


class RomLib:
    """The ROM library's timestamp and segment access routines."""

    def __init__(self, memory: SegmentMemory) -> None:
        self.memory = memory

    def tstamp_read(self) -> int:
        return TSTAMP_VALUE

    def _write(self, seg: int, offset: int, value: int, width: int) -> None:
        mask = (1 << (8 * width)) - 1
        self.memory.write_seg(seg, offset, (value & mask).to_bytes(width, "little"))

    def _read(self, seg: int, offset: int, width: int, preset: int = 0) -> int:
        initial = preset.to_bytes(width, "little")
        data = self.memory.read_seg(seg, offset, width)[:width]
        raw = data + initial[len(data):]
        return int.from_bytes(raw, "little", signed=True)

    def write_seg_32(self, seg: int, offset: int, value: int) -> None:
        self._write(seg, offset, value, 4)

    def write_seg_16(self, seg: int, offset: int, value: int) -> None:
        self._write(seg, offset, value, 2)

    def write_seg_8(self, seg: int, offset: int, value: int) -> None:
        self._write(seg, offset, value, 1)

    def read_seg_32(self, seg: int, offset: int) -> int:
        preset = _SEG_0x3B_PRESET if seg == 0x3B else 0
        return self._read(seg, offset, 4, preset)

    def read_seg_16(self, seg: int, offset: int) -> int:
        return self._read(seg, offset, 2)

    def read_seg_8(self, seg: int, offset: int) -> int:
        return self._read(seg, offset, 1)

    def write_seg(self, seg: int, offset: int, data: bytes) -> None:
        self.memory.write_seg(seg, offset, data)

    def read_seg(self, seg: int, offset: int, count: int) -> bytes:
        return self.memory.read_seg(seg, offset, count)