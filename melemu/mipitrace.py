"""Reassembly of MIPI trace packets and decoding of their SVEN payloads."""

from __future__ import annotations

import enum
import re
import struct
from dataclasses import dataclass
from typing import Callable, Iterator

from .config import ConfigFile
from .log import LogLevel, log
from .printf import cformat, cprintf, snformat

__all__ = ["MsgType", "TraceMessage", "TraceDecoder"]

BUFFER_SIZE = 64
DATA_CAPACITY = BUFFER_SIZE * 4
_NAME_BUFFER = 40
_TEXT_BUFFER = 640

_LABELS = ("Dn", "DnM", "DnTS", "DnMTS", "USER", "USER_TS", "FLAG",
           "FLAG_TS", "MERR")

_CONVERSION = re.compile(
    r"%[-+ #0]*(\*|[0-9]*)(?:\.(\*|[0-9]*))?(hh|h|ll|l|j|z|t)?(.)", re.S)


class MsgType(enum.IntEnum):
    """Trace message kinds, in register order."""

    DN = 0
    DNM = 1
    DNTS = 2
    DNMTS = 3
    USER = 4
    USER_TS = 5
    FLAG = 6
    FLAG_TS = 7
    MERR = 8

    @property
    def label(self) -> str:
        return _LABELS[self]


@dataclass(frozen=True)
class TraceMessage:
    """One trace write: its kind, its width in bytes and its value."""

    type: int
    size: int
    value: int

    @classmethod
    def from_bytes(cls, msg_type: int, data: bytes) -> "TraceMessage":
        """Build a message from the little-endian bytes of one write."""
        if len(data) not in (1, 2, 4, 8):
            raise ValueError(f"unsupported trace write width {len(data)}")
        return cls(msg_type, len(data), int.from_bytes(data, "little"))

    @property
    def d8(self) -> int:
        return self.value & 0xFF

    @property
    def d16(self) -> int:
        return self.value & 0xFFFF

    @property
    def d32(self) -> int:
        return self.value & 0xFFFFFFFF

    @property
    def d64(self) -> int:
        return self.value & 0xFFFFFFFFFFFFFFFF


Sink = Callable[[str, str], None]


def _log_line(module: str, line: str) -> None:
    log(LogLevel.METRC, module, "%s", line)


def _word_reader(payload: bytes) -> Callable[[int], int]:
    offset = 0

    def take(count: int) -> int:
        nonlocal offset
        chunk = payload[offset:offset + count].ljust(count, b"\0")
        offset += count
        return int.from_bytes(chunk, "little")

    return take


def _catalog_args(fmt: str, payload: bytes) -> Iterator[object]:
    """Yield the arguments ``fmt`` consumes, read as 32-bit ABI words."""
    take = _word_reader(payload)
    for match in _CONVERSION.finditer(fmt):
        width, precision, modifier, conversion = match.groups()
        if conversion == "%":
            continue
        if width == "*":
            yield take(4)
        if precision == "*":
            yield take(4)
        if conversion == "s":
            yield f"<0x{take(4):08X}>"
        elif modifier in ("ll", "j"):
            yield take(8)
        else:
            yield take(4)


class TraceDecoder:
    """Collects trace writes per master and channel and decodes whole packets."""

    def __init__(self, sink: Sink | None = None) -> None:
        self._sink = sink or _log_line
        self._dictionary: ConfigFile | None = None
        self._master = -1
        self._channel = -1
        self._msgs: list[TraceMessage] = []

    def load_dictionary(self, config: ConfigFile) -> None:
        """Use ``config`` to look up catalog message formats."""
        self._dictionary = config

    def feed(self, master: int, channel: int, msg: TraceMessage) -> list[str]:
        """Add one message; return the lines printed if it completed a packet."""
        if len(self._msgs) >= BUFFER_SIZE:
            cprintf("[mipi] Trace buffer overflow, dropping packet!")
            return []
        if master != self._master or channel != self._channel:
            if self._master != -1:
                cprintf("[mipi] Dropping trace buffer because of interleaved masters")
            self._msgs.clear()
            self._master = master
            self._channel = channel
        self._msgs.append(msg)
        return self._decode()

    def _decode(self) -> list[str]:
        msgs = self._msgs
        if msgs[-1].type != MsgType.FLAG:
            return []
        if msgs[0].type != MsgType.DNTS:
            error = "Trace packet did not start with DnTS"
        elif msgs[0].size != 4:
            error = "Trace packet did not start with 32 bit pkt"
        elif msgs[1].size != 2:
            error = "Trace packet size is not 16 bit"
        elif msgs[-1].d32:
            error = "Trace flags is not zero"
        else:
            error = None
        if error is not None:
            log(LogLevel.ERROR, "mipi", "%s", error)
            msgs.clear()
            return []

        header = msgs[0].d32
        size = msgs[1].d16
        log(LogLevel.TRACE, "mipi",
            "Packet from %i:%i with type 0x%08X and size %i",
            self._master, self._channel, header, size)
        if size > DATA_CAPACITY:
            log(LogLevel.ERROR, "mipi", "Trace packet size %i exceeds %i bytes",
                size, DATA_CAPACITY)
            msgs.clear()
            return []

        words = iter(msgs[2:])
        data = bytearray()
        for width in (4, 2, 1):
            while len(data) + width <= size:
                msg = next(words, None)
                value = msg.value if msg is not None else 0
                data += (value & ((1 << (8 * width)) - 1)).to_bytes(width, "little")

        msgs.clear()
        self._master = -1
        return self.decode_sven(header, bytes(data))

    def decode_sven(self, header: int, data: bytes) -> list[str]:
        """Decode a SVEN payload and return the lines it printed."""
        kind = header & 0xF
        severity = (header >> 4) & 0x7
        unit = (header >> 12) & 0xF
        module = (header >> 16) & 0xFF
        subtype = (header >> 24) & 0xFF
        if kind == 2:
            log(LogLevel.TRACE, "sven",
                "debug_string sev:%02x unit:%02x module:%02x sub:%02x",
                severity, unit, module, subtype)
            text = data.split(b"\0", 1)[0].decode("latin-1")
            return self._print_multiline(text)
        if kind == 3:
            id_low, id_high = struct.unpack_from("<II", data.ljust(8, b"\0"))
            log(LogLevel.TRACE, "sven",
                "catalog_msg  sev:%02x unit:%02x module:%02x sub:%02x %08x%08x",
                severity, unit, module, subtype, id_high, id_low)
            return self._print_multiline(self._catalog_text(id_high, id_low, data))
        return []

    def _catalog_text(self, id_high: int, id_low: int, data: bytes) -> str:
        name = snformat(_NAME_BUFFER, "msg_0x%08x%08x", id_high, id_low)
        fmt = None
        if self._dictionary is not None:
            section = self._dictionary.find_section(name)
            if section is not None:
                fmt = section.find_string("message")
        if fmt is None:
            take = _word_reader(data)
            return snformat(_TEXT_BUFFER, "%08X%08X%08X", take(4), take(4), take(4))
        return snformat(_TEXT_BUFFER, fmt, *_catalog_args(fmt, data[8:]))

    def _print_multiline(self, text: str) -> list[str]:
        lines = [line for line in text.split("\n") if line]
        for line in lines:
            self._sink("sven", line)
        return lines


# Keeps the id formatting helper referenced for callers building names.
_format_name = cformat