"""Hand-off blocks passed from the ROM to the running module."""

from __future__ import annotations

import struct

from .config import ConfigFile, ConfigSection, EntryType
from .fileutil import read_full_file
from .log import LogLevel, log, logassert

__all__ = ["Snowball", "SNOWBALL_CAPACITY", "BLOCK_HEADER_SIZE"]

SNOWBALL_CAPACITY = 0x1FE000
_BLOCK = struct.Struct("<12sBBHH")
BLOCK_HEADER_SIZE = _BLOCK.size


class Snowball:
    """A byte queue of hand-off blocks, filled at start-up and read by the module."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._read_pos = 0

    @property
    def pending(self) -> int:
        """Number of bytes not yet read."""
        return len(self._buffer) - self._read_pos

    def add(self, name: str, unk0: int, flags: int, data: bytes, unk1: int) -> None:
        """Append a block; a block that would not fit is dropped."""
        total = len(data) + BLOCK_HEADER_SIZE
        if total + len(self._buffer) >= SNOWBALL_CAPACITY:
            return
        raw_name = name.encode("latin-1")[:12]
        self._buffer += _BLOCK.pack(raw_name, unk0 & 0xFF, (flags | 1) & 0xFF,
                                    total & 0xFFFF, unk1 & 0xFFFF)
        self._buffer += data

    def read(self, size: int, size2: int) -> bytes:
        """Return up to ``size`` unread bytes; nothing if the two sizes differ."""
        log(LogLevel.TRACE, "krnl", "sys_snowball_read( %i, %i )", size, size2)
        if size != size2 or self.pending == 0:
            return b""
        turn = min(size, self.pending)
        chunk = bytes(self._buffer[self._read_pos:self._read_pos + turn])
        self._read_pos += turn
        return chunk

    def add_section(self, section: ConfigSection) -> None:
        """Add the block described by a configuration section."""
        flags = section.find_int("flags", 16) or 0
        unk0 = section.find_int("unknown_0", 16) or 0
        unk1 = section.find_int("unknown_1", 16) or 0

        path = section.find_string("path")
        if path is not None:
            data = bytes(read_full_file(path))
            self.add(section.name, unk0, flags, data[:len(data) & 0xFFFF], unk1)
            return

        size = section.find_int("size", 16)
        value = section.find_entry("value")
        if value is None:
            logassert(size is not None, "snowball", "An empty snowball should have a size")
            self.add(section.name, unk0, flags, bytes(size), unk1)
            return

        if value.type is EntryType.STRING:
            text = str(value.value).encode("latin-1")
            if size is None:
                size = len(text)
            else:
                logassert(size <= len(text) + 1, "snowball",
                          "Specified size was larger than input string")
            self.add(section.name, unk0, flags, (text + b"\0")[:size], unk1)
            return

        logassert(size is not None, "snowball", "An integer snowball should have a size")
        logassert(size <= 8, "snowball", "An integer snowball should be at most 8 bytes")
        raw = (int(value.value) & 0xFFFFFFFFFFFFFFFF).to_bytes(8, "little")
        self.add(section.name, unk0, flags, raw[:size], unk1)

    def init_from_config(self, config: ConfigFile) -> None:
        """Add a block for every ``snowball`` section, in file order."""
        for section in config.sections_of_type("snowball"):
            self.add_section(section)