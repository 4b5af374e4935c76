"""Trace hub device: the global trace hub registers and the firmware trace memory region."""

from __future__ import annotations

from .config import ConfigSection
from .devreg import DeviceInstance, DeviceRegistry
from .log import LogLevel, log
from .mipitrace import MsgType, TraceDecoder, TraceMessage
from .pcibus import BusRegistry
from .pcidevice import SimpleFlags, SimpleFunction

__all__ = ["TraceHub", "ftmr_msgtype", "spawn_tracehub",
           "TRACEHUB_MTB_SIZE", "TRACEHUB_FTMR_SIZE"]

TRACEHUB_MTB_SIZE = 0x00100000
TRACEHUB_FTMR_SIZE = 0x00400000

TRACEHUB_GTH_OFFSET = 0x0
TRACEHUB_TSCU_OFFSET = 0x2000
TRACEHUB_CTS_OFFSET = 0x3000
TRACEHUB_STH_OFFSET = 0x4000
TRACEHUB_SOCHAP_OFFSET = 0x5000
TRACEHUB_ODLA_OFFSET = 0x6000
TRACEHUB_VISE_OFFSET = 0x7000
TRACEHUB_VISC_OFFSET = 0x20000

_GTH_SCRPD0 = 0xE0
_GTH_SWDEST_FIRST = 0x8
_GTH_SWDEST_LAST = 0x84

_MSG_TYPES = {
    0x00: 0, 0x08: 1, 0x10: 2, 0x18: 3, 0x20: 4,
    0x28: 5, 0x30: 6, 0x34: 7, 0x38: 8, 0x3C: 9,
}


def ftmr_msgtype(offset: int) -> int:
    """Return the message type written at ``offset`` within a channel's 64 bytes."""
    try:
        return _MSG_TYPES[offset]
    except KeyError:
        raise ValueError(f"no trace message register at offset 0x{offset:02x}") from None


def _label(msg_type: int) -> str:
    try:
        return MsgType(msg_type).label
    except ValueError:
        return str(msg_type)


class TraceHub(SimpleFunction):
    """Trace hub PCI function: BAR 0 is the MTB, BAR 3 the firmware trace region."""

    def __init__(self, name: str, decoder: TraceDecoder | None = None) -> None:
        super().__init__(DeviceInstance(name),
                         [TRACEHUB_MTB_SIZE, 0, 0, TRACEHUB_FTMR_SIZE],
                         SimpleFlags.NONE)
        self.device.impl = self
        self.decoder = decoder if decoder is not None else TraceDecoder()
        self.gth_scrpd0 = 0
        self.gth_swdest = [0] * 32

    def fake_probe(self) -> None:
        """Preset registers so that trace probing firmware sees a debugger attached."""
        self.gth_scrpd0 = 1 << 24
        self.gth_swdest[2] = 0x80000 | 0x8000 | 0x800 | 0x80 | 0x8

    @staticmethod
    def _aligned(addr: int, count: int) -> bool:
        return not addr & 3 and count == 4

    def gth_read(self, addr: int, count: int) -> bytes:
        """Read a GTH register; unaligned or unknown registers read as zeros."""
        if not self._aligned(addr, count):
            log(LogLevel.ERROR, self.name, "Non-aligned read to GTH: off: %05x cnt: %05x\n",
                addr, count)
            return bytes(count)
        if addr == _GTH_SCRPD0:
            value = self.gth_scrpd0
        elif _GTH_SWDEST_FIRST <= addr <= _GTH_SWDEST_LAST:
            value = self.gth_swdest[(addr - _GTH_SWDEST_FIRST) // 4]
        else:
            value = 0
        return value.to_bytes(4, "little")

    def gth_write(self, addr: int, data: bytes) -> None:
        """Write a GTH register; unaligned writes are ignored."""
        if not self._aligned(addr, len(data)):
            log(LogLevel.ERROR, self.name, "Non-aligned write to GTH: off: %05x cnt: %05x\n",
                addr, len(data))
            return
        value = int.from_bytes(data, "little")
        if addr == _GTH_SCRPD0:
            self.gth_scrpd0 = value
        elif _GTH_SWDEST_FIRST <= addr <= _GTH_SWDEST_LAST:
            self.gth_swdest[(addr - _GTH_SWDEST_FIRST) // 4] = value

    def ftmr_read(self, addr: int, count: int) -> tuple[int, bytes]:
        """Reads from the trace region are not supported; they return zeros."""
        if 0 <= addr < TRACEHUB_FTMR_SIZE:
            log(LogLevel.ERROR, self.name,
                "Read from Firmware Trace Memory Region : %08x", addr)
            return 1, bytes(count)
        return 0, bytes(count)

    def ftmr_write(self, addr: int, data: bytes) -> int:
        """Turn a write into a trace message for its master and channel."""
        if not 0 <= addr < TRACEHUB_FTMR_SIZE:
            return 0
        master, chan = divmod(addr // 0x40, 1024)
        try:
            reg_no = ftmr_msgtype(addr % 0x40)
        except ValueError:
            log(LogLevel.ERROR, self.name, "Master %i:%i write to unknown register 0x%02x",
                master, chan, addr % 0x40)
            return 1
        if len(data) not in (1, 2, 4, 8):
            log(LogLevel.ERROR, self.name,
                "Master %i:%i write to %s with unsupported count %i\n",
                master, chan, _label(reg_no), len(data))
            return 1
        self.decoder.feed(master, chan, TraceMessage.from_bytes(reg_no, data))
        return 1

    def mtb_read(self, addr: int, count: int) -> tuple[int, bytes]:
        if addr < TRACEHUB_TSCU_OFFSET:
            return 1, self.gth_read(addr - TRACEHUB_GTH_OFFSET, count)
        return 1, bytes(count)

    def mtb_write(self, addr: int, data: bytes) -> int:
        if addr < TRACEHUB_TSCU_OFFSET:
            self.gth_write(addr - TRACEHUB_GTH_OFFSET, data)
        return 1

    def bar_read(self, bar: int, offset: int, count: int) -> tuple[int, bytes] | None:
        if bar == 0:
            return self.mtb_read(offset, count)
        if bar == 3:
            return self.ftmr_read(offset, count)
        return None

    def bar_write(self, bar: int, offset: int, data: bytes) -> int | None:
        if bar == 0:
            return self.mtb_write(offset, data)
        if bar == 3:
            return self.ftmr_write(offset, data)
        return None


def spawn_tracehub(section: ConfigSection, devices: DeviceRegistry,
                   buses: BusRegistry,
                   decoder: TraceDecoder | None = None) -> DeviceInstance:
    """Create a trace hub from ``section``, attach it and register its device."""
    hub = TraceHub(section.name, decoder)
    if section.find_int("fake_probe", 32):
        hub.fake_probe()
    hub.setup(section, buses)
    devices.register(hub.device)
    return hub.device