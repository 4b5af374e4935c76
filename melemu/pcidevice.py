"""A basic PCI function backed by BARs, and helpers that set functions up from configuration."""

from __future__ import annotations

import enum
from typing import Iterable

from .config import ConfigSection
from .devreg import DeviceInstance
from .log import LogLevel, fatal, log
from .pcibus import (
    PCI_ADDR_TYPE1,
    PCI_BAR_ADDRESS64_MASK,
    PCI_BAR_ADDRESS_MASK,
    PCI_COMMAND_MSE,
    PCI_CONFIG_SIZE,
    BusRegistry,
    PciFunction,
    addr_reg,
    pack_bdf,
)

__all__ = ["SimpleFlags", "SimpleFunction", "handle_type0", "handle_device"]

_HEADER_FIELDS = ("device_id", "vendor_id", "command", "status")


class SimpleFlags(enum.IntFlag):
    """Options for a simple function."""

    NONE = 0
    BIT64 = 1 << 0


def handle_type0(func: PciFunction, section: ConfigSection, bit64: int) -> None:
    """Fill the type 0 header of ``func`` from the entries present in ``section``."""
    config = func.config
    for key in _HEADER_FIELDS:
        value = section.find_int(key, 16)
        if value is not None:
            setattr(config, key, value)
    if bit64:
        for index in range(3):
            value = section.find_int(f"bar{index}", 64)
            if value is not None:
                config.set_bar64(index, value)
    else:
        for index in range(6):
            value = section.find_int(f"bar{index}", 32)
            if value is not None:
                config.set_bar(index, value)


def handle_device(func: PciFunction, section: ConfigSection, buses: BusRegistry) -> None:
    """Give ``func`` its device and function number and attach it to its bus."""
    dev_no = section.find_int("device_no", 32)
    if dev_no is None or dev_no > 31:
        fatal(section.name, "Missing or invalid PCI device number")
    func_no = section.find_int("func_no", 32)
    if func_no is None or func_no > 7:
        fatal(section.name, "Missing or invalid PCI function number")

    func.bdf = pack_bdf(0, dev_no, func_no)

    bus_name = section.find_string("bus")
    if bus_name is None:
        fatal(section.name, "Missing PCI bus name")
    bus = buses.find(bus_name)
    if bus is None:
        fatal(section.name, "Could not find PCI bus %s", bus_name)
    bus.register_function(func)


class SimpleFunction(PciFunction):
    """A function whose memory cycles are decoded against its BARs.

    Subclasses serve BAR accesses by overriding :meth:`bar_read` and
    :meth:`bar_write`, and may watch configuration accesses through
    :meth:`on_cfg_read` and :meth:`on_cfg_write`.
    """

    def __init__(self, device: DeviceInstance | None = None,
                 bar_sizes: Iterable[int] = (),
                 flags: int = SimpleFlags.NONE) -> None:
        super().__init__(0, device)
        self.flags = SimpleFlags(flags)
        self.bar_sizes = list(bar_sizes)
        limit = 3 if self.flags & SimpleFlags.BIT64 else 6
        if len(self.bar_sizes) > limit:
            raise ValueError(f"at most {limit} BARs are supported, got {len(self.bar_sizes)}")

    @property
    def max_bar(self) -> int:
        return len(self.bar_sizes)

    @property
    def name(self) -> str:
        return self.device.name if self.device is not None else "pci"

    def setup(self, section: ConfigSection | None, buses: BusRegistry) -> None:
        """Configure the header from ``section`` and attach to the named bus."""
        if section is None:
            fatal("pci_simple_func", "Can't initialize PCI function without configuration")
        handle_type0(self, section, self.flags & SimpleFlags.BIT64)
        handle_device(self, section, buses)

    def bar_read(self, bar: int, offset: int, count: int) -> tuple[int, bytes] | None:
        """Serve a read from a BAR; this function serves none."""
        log(LogLevel.ERROR, self.name,
            "Memory read not implemented ( BAR %i, Offset: 0x%03x, Size: 0x%x )",
            bar, offset, count)
        return None

    def bar_write(self, bar: int, offset: int, data: bytes) -> int | None:
        """Serve a write to a BAR; this function serves none."""
        log(LogLevel.ERROR, self.name,
            "Memory write not implemented ( BAR %i, Offset: 0x%03x, Size: 0x%x )",
            bar, offset, len(data))
        return None

    def on_cfg_read(self, offset: int) -> None:
        """Called before configuration space is read at ``offset``."""

    def on_cfg_write(self, offset: int) -> None:
        """Called after configuration space was written at ``offset``."""

    def _config_offset(self, addr: int, count: int, what: str) -> int | None:
        if addr & PCI_ADDR_TYPE1:
            return None
        off = addr_reg(addr)
        if off + count > PCI_CONFIG_SIZE:
            log(LogLevel.ERROR, self.name,
                "Configuration %s beyond bounds ( Offset: 0x%03x, Size: 0x%x )",
                what, off, count)
            return None
        return off

    def cfg_read(self, addr: int, count: int) -> bytes | None:
        off = self._config_offset(addr, count, "read")
        if off is None:
            return None
        self.on_cfg_read(off)
        return self.config.read(off, count)

    def cfg_write(self, addr: int, data: bytes) -> bool:
        off = self._config_offset(addr, len(data), "write")
        if off is None:
            return False
        self.config.write(off, data)
        self.on_cfg_write(off)
        return True

    def _bar_base(self, bar: int) -> int:
        if self.flags & SimpleFlags.BIT64:
            return self.config.get_bar64(bar) & PCI_BAR_ADDRESS64_MASK
        return self.config.get_bar(bar) & PCI_BAR_ADDRESS_MASK

    def _decode(self, addr: int, count: int, what: str) -> tuple[int, int] | None:
        for bar, size in enumerate(self.bar_sizes):
            base = self._bar_base(bar)
            if addr < base:
                continue
            off = addr - base
            if off <= size:
                break
        else:
            return None
        if off + count > size:
            log(LogLevel.ERROR, self.name,
                "Memory %s beyond bounds ( BAR %i, Offset: 0x%03x, Size: 0x%x )",
                what, bar, off, count)
            return None
        if not self.config.command & PCI_COMMAND_MSE:
            log(LogLevel.WARN, self.name,
                "Memory %s while memory space disabled ( BAR %i, Offset: 0x%03x, Size: 0x%x )",
                what, bar, off, count)
            return None
        return bar, off

    def mem_read(self, addr: int, count: int, sai: int,
                 lat: int) -> tuple[int, bytes] | None:
        hit = self._decode(addr, count, "read")
        if hit is None:
            return None
        return self.bar_read(hit[0], hit[1], count)

    def mem_write(self, addr: int, data: bytes, sai: int, lat: int) -> int | None:
        hit = self._decode(addr, len(data), "write")
        if hit is None:
            return None
        return self.bar_write(hit[0], hit[1], data)