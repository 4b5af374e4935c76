"""PCI bus emulation: configuration space, functions, buses and bus lookup.

Only memory and configuration cycles are carried. Functions attach directly
to a bus; the device number is only part of a function's address. Memory
cycles are offered to every function once per simulated latency step until
one of them claims the cycle or the latency limit is reached.
"""

from __future__ import annotations

import struct
from typing import Callable, Iterator, Optional

from .devreg import DeviceInstance
from .log import LogLevel, log

__all__ = [
    "PciError", "ConfigSpace", "PciFunction", "PciBus", "BusRegistry",
    "pack_bdf", "pack_addr", "addr_bus", "addr_dev", "addr_func", "addr_reg",
    "PCI_CONFIG_SIZE", "PCI_ADDR_TYPE0", "PCI_ADDR_TYPE1",
    "PCI_ADDR_TYPE0_MASK", "PCI_ADDR_TYPE1_MASK", "PCI_ADDR_BDF_MASK",
    "PCI_BDF_DF_MASK", "PCI_BAR_ADDRESS_MASK", "PCI_BAR_ADDRESS64_MASK",
    "PCI_COMMAND_IOSE", "PCI_COMMAND_MSE", "PCI_COMMAND_BME",
    "PCI_COMMAND_SCE", "PCI_COMMAND_MWIE",
]

PCI_CONFIG_SIZE = 0x1000
PCI_ADDR_TYPE0 = 0x00000000
PCI_ADDR_TYPE1 = 0x10000000
PCI_ADDR_TYPE0_MASK = 0x00007FFF
PCI_ADDR_TYPE1_MASK = 0x0FFFFFFF
PCI_ADDR_BDF_MASK = 0x0FFFF000
PCI_BDF_DF_MASK = 0x000FF000

PCI_BAR_ADDRESS_MASK = 0xFFFFFFF0
PCI_BAR_ADDRESS64_MASK = 0xFFFFFFFFFFFFFFF0
PCI_COMMAND_IOSE = 1 << 0
PCI_COMMAND_MSE = 1 << 1
PCI_COMMAND_BME = 1 << 2
PCI_COMMAND_SCE = 1 << 3
PCI_COMMAND_MWIE = 1 << 4

_BAR_OFFSET = 0x10

CfgReader = Callable[["PciFunction", int, int], Optional[bytes]]
CfgWriter = Callable[["PciFunction", int, bytes], bool]
CycleReader = Callable[["PciFunction", int, int, int, int], Optional[tuple]]
CycleWriter = Callable[["PciFunction", int, bytes, int, int], Optional[int]]


class PciError(Exception):
    """Raised when a bus or function is defined twice."""


def pack_bdf(bus: int, dev: int, func: int) -> int:
    """Pack a bus/device/function triple into address bits 12 and up."""
    return ((bus << 8) | (dev << 3) | func) << 12


def pack_addr(bus: int, dev: int, func: int, offset: int) -> int:
    """Pack a configuration space address."""
    return pack_bdf(bus, dev, func) | offset


def addr_bus(addr: int) -> int:
    return (addr >> 20) & 0xFF


def addr_dev(addr: int) -> int:
    return (addr >> 15) & 0x1F


def addr_func(addr: int) -> int:
    return (addr >> 12) & 0x7


def addr_reg(addr: int) -> int:
    return addr & 0xFFF


class _Field:
    """A little-endian integer at a fixed offset of the configuration space."""

    def __init__(self, offset: int, fmt: str) -> None:
        self.offset = offset
        self.fmt = fmt
        self.mask = (1 << (8 * struct.calcsize(fmt))) - 1

    def __get__(self, obj: "ConfigSpace | None", owner: type) -> object:
        if obj is None:
            return self
        return struct.unpack_from(self.fmt, obj.data, self.offset)[0]

    def __set__(self, obj: "ConfigSpace", value: int) -> None:
        struct.pack_into(self.fmt, obj.data, self.offset, value & self.mask)


class ConfigSpace:
    """A 4 KiB configuration space with the type 0 header fields."""

    vendor_id = _Field(0x00, "<H")
    device_id = _Field(0x02, "<H")
    command = _Field(0x04, "<H")
    status = _Field(0x06, "<H")
    revision_id = _Field(0x08, "<B")
    cache_line_size = _Field(0x0C, "<B")
    latency_timer = _Field(0x0D, "<B")
    header_type = _Field(0x0E, "<B")
    bist = _Field(0x0F, "<B")
    cardbus_cis_pointer = _Field(0x28, "<I")
    subsystem_vendor_id = _Field(0x2C, "<H")
    subsystem_id = _Field(0x2E, "<H")
    rom_bar = _Field(0x30, "<I")
    cap_pointer = _Field(0x34, "<B")
    int_line = _Field(0x3C, "<B")
    int_pin = _Field(0x3D, "<B")
    min_grant = _Field(0x3E, "<B")
    max_latency = _Field(0x3F, "<B")

    def __init__(self) -> None:
        self.data = bytearray(PCI_CONFIG_SIZE)

    def _check(self, offset: int, count: int) -> None:
        if offset < 0 or count < 0 or offset + count > PCI_CONFIG_SIZE:
            raise ValueError(
                f"configuration access out of bounds (offset 0x{offset:x}, size 0x{count:x})")

    def read(self, offset: int, count: int) -> bytes:
        """Return ``count`` bytes starting at ``offset``."""
        self._check(offset, count)
        return bytes(self.data[offset:offset + count])

    def write(self, offset: int, data: bytes) -> None:
        """Store ``data`` starting at ``offset``."""
        self._check(offset, len(data))
        self.data[offset:offset + len(data)] = data

    def get_bar(self, index: int) -> int:
        if not 0 <= index < 6:
            raise IndexError(f"BAR index {index} out of range")
        return struct.unpack_from("<I", self.data, _BAR_OFFSET + 4 * index)[0]

    def set_bar(self, index: int, value: int) -> None:
        if not 0 <= index < 6:
            raise IndexError(f"BAR index {index} out of range")
        struct.pack_into("<I", self.data, _BAR_OFFSET + 4 * index, value & 0xFFFFFFFF)

    def get_bar64(self, index: int) -> int:
        if not 0 <= index < 3:
            raise IndexError(f"64-bit BAR index {index} out of range")
        return struct.unpack_from("<Q", self.data, _BAR_OFFSET + 8 * index)[0]

    def set_bar64(self, index: int, value: int) -> None:
        if not 0 <= index < 3:
            raise IndexError(f"64-bit BAR index {index} out of range")
        struct.pack_into("<Q", self.data, _BAR_OFFSET + 8 * index,
                         value & 0xFFFFFFFFFFFFFFFF)


class PciFunction:
    """A function on a bus, answering cycles through optional handlers.

    Subclasses override the cycle methods; plain instances dispatch to the
    handlers given at construction and leave a cycle uncompleted where no
    handler was given.

    ``cfg_read`` returns the bytes read, or None when the cycle is not
    completed; ``cfg_write`` returns whether it completed. ``mem_read`` and
    ``io_read`` return ``(status, data)`` or None when not claimed;
    ``mem_write`` and ``io_write`` return a status or None. A status is the
    completer's SAI when it is zero or more, and an error completion when it
    is below -1.
    """

    def __init__(self, bdf: int = 0, device: DeviceInstance | None = None, *,
                 cfg_reader: CfgReader | None = None,
                 cfg_writer: CfgWriter | None = None,
                 mem_reader: CycleReader | None = None,
                 mem_writer: CycleWriter | None = None,
                 io_reader: CycleReader | None = None,
                 io_writer: CycleWriter | None = None) -> None:
        self.bdf = bdf
        self.device = device
        self.bus: PciBus | None = None
        self.config = ConfigSpace()
        self._cfg_reader = cfg_reader
        self._cfg_writer = cfg_writer
        self._mem_reader = mem_reader
        self._mem_writer = mem_writer
        self._io_reader = io_reader
        self._io_writer = io_writer

    def cfg_read(self, addr: int, count: int) -> bytes | None:
        if self._cfg_reader is None:
            return None
        return self._cfg_reader(self, addr, count)

    def cfg_write(self, addr: int, data: bytes) -> bool:
        if self._cfg_writer is None:
            return False
        return bool(self._cfg_writer(self, addr, data))

    def mem_read(self, addr: int, count: int, sai: int, lat: int) -> tuple[int, bytes] | None:
        if self._mem_reader is None:
            return None
        return self._mem_reader(self, addr, count, sai, lat)

    def mem_write(self, addr: int, data: bytes, sai: int, lat: int) -> int | None:
        if self._mem_writer is None:
            return None
        return self._mem_writer(self, addr, data, sai, lat)

    def io_read(self, addr: int, count: int, sai: int, lat: int) -> tuple[int, bytes] | None:
        if self._io_reader is None:
            return None
        return self._io_reader(self, addr, count, sai, lat)

    def io_write(self, addr: int, data: bytes, sai: int, lat: int) -> int | None:
        if self._io_writer is None:
            return None
        return self._io_writer(self, addr, data, sai, lat)


def _claimed(status: int | None) -> bool:
    return status is not None and status != -1


class PciBus:
    """A named bus holding functions, most recently registered first."""

    def __init__(self, name: str, bus_num: int = 0) -> None:
        self.name = name
        self.bus_num = bus_num
        self.functions: list[PciFunction] = []

    def __iter__(self) -> Iterator[PciFunction]:
        return iter(self.functions)

    def find_function(self, bdf: int) -> PciFunction | None:
        """Find a function by device and function number; the bus part is ignored."""
        bdf &= PCI_BDF_DF_MASK
        return next((f for f in self.functions
                     if (f.bdf & PCI_BDF_DF_MASK) == bdf), None)

    def register_function(self, func: PciFunction) -> None:
        """Attach ``func``, giving it this bus's number."""
        if self.find_function(func.bdf) is not None:
            log(LogLevel.FATAL, "pci", "Tried to redefine PCI function 0x%x on bus %s",
                func.bdf, self.name)
            raise PciError(f"PCI function 0x{func.bdf:x} already defined on bus {self.name}")
        func.bdf = (func.bdf & PCI_BDF_DF_MASK) | pack_bdf(self.bus_num, 0, 0)
        func.bus = self
        self.functions.insert(0, func)

    def set_bus_num(self, bus_num: int) -> None:
        """Change the bus number and propagate it to every function."""
        self.bus_num = bus_num
        for func in self.functions:
            func.bdf = (func.bdf & PCI_BDF_DF_MASK) | pack_bdf(bus_num, 0, 0)

    def _local_target(self, addr: int) -> PciFunction | None:
        return self.find_function(addr & PCI_ADDR_BDF_MASK)

    def config_read(self, addr: int, count: int) -> bytes | None:
        """Run a configuration read cycle; None when nothing completed it."""
        if addr_bus(addr) != self.bus_num:
            addr = (addr & PCI_ADDR_TYPE1_MASK) | PCI_ADDR_TYPE1
            for func in self.functions:
                data = func.cfg_read(addr, count)
                if data is not None:
                    return data
            return None
        func = self._local_target(addr)
        if func is None:
            return None
        return func.cfg_read(addr & PCI_ADDR_TYPE0_MASK, count)

    def config_write(self, addr: int, data: bytes) -> bool:
        """Run a configuration write cycle; return whether it completed."""
        if addr_bus(addr) != self.bus_num:
            addr = (addr & PCI_ADDR_TYPE1_MASK) | PCI_ADDR_TYPE1
            return any(func.cfg_write(addr, data) for func in self.functions)
        func = self._local_target(addr)
        if func is None:
            return False
        return func.cfg_write(addr & PCI_ADDR_TYPE0_MASK, data)

    def mem_read(self, addr: int, count: int, sai: int,
                 max_lat: int) -> tuple[int, bytes] | None:
        """Run a memory read cycle; None when no function claimed it in time."""
        for lat in range(max_lat):
            for func in self.functions:
                result = func.mem_read(addr, count, sai, lat)
                if result is not None and _claimed(result[0]):
                    return result
        return None

    def mem_write(self, addr: int, data: bytes, sai: int, max_lat: int) -> int | None:
        """Run a memory write cycle; None when no function claimed it in time."""
        for lat in range(max_lat):
            for func in self.functions:
                status = func.mem_write(addr, data, sai, lat)
                if _claimed(status):
                    return status
        return None

    def io_read(self, addr: int, count: int, sai: int,
                max_lat: int) -> tuple[int, bytes] | None:
        """Run an I/O read cycle; None when no function claimed it in time."""
        for lat in range(max_lat):
            for func in self.functions:
                result = func.io_read(addr, count, sai, lat)
                if result is not None and _claimed(result[0]):
                    return result
        return None

    def io_write(self, addr: int, data: bytes, sai: int, max_lat: int) -> int | None:
        """Run an I/O write cycle; None when no function claimed it in time."""
        for lat in range(max_lat):
            for func in self.functions:
                status = func.io_write(addr, data, sai, lat)
                if _claimed(status):
                    return status
        return None


class BusRegistry:
    """Buses indexed by their unique names."""

    def __init__(self) -> None:
        self._buses: dict[str, PciBus] = {}

    def register(self, bus: PciBus) -> None:
        if bus.name in self._buses:
            log(LogLevel.FATAL, "pci", "Tried to redefine PCI bus %s", bus.name)
            raise PciError(f"PCI bus {bus.name} already defined")
        self._buses[bus.name] = bus

    def find(self, name: str) -> PciBus | None:
        return self._buses.get(name)