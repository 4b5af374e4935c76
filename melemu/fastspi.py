"""Fast SPI flash controller backed by an image file."""

from __future__ import annotations

import errno
import os
from dataclasses import dataclass, field
from typing import BinaryIO

from .config import ConfigSection
from .devreg import DeviceInstance, DeviceRegistry
from .log import LogLevel, fatal, log, logassert
from .pcibus import BusRegistry
from .pcidevice import SimpleFlags, SimpleFunction

__all__ = ["SpiRegion", "SpiComponent", "FastSpi", "spawn_fastspi"]

NUM_REGIONS = 12
NUM_COMPONENTS = 2
JEDEC_WORDS = 0x40
PAR_WORDS = 0x200
BUFFER_SIZE = 0x40

_BAR_SIZES = (0x00001000, 0x01000000, 0x01000000)

_REG_HSFLCTL = 0x04
_REG_FADDR = 0x08
_DATA_FIRST = 0x10
_DATA_END = 0x50
_REG_FRAP = 0x50
_FREG_FIRST = 0x54
_FREG_LAST = 0x80
_REG_SSFSTS_CTL = 0xA0
_REG_PREOP_OPTYPE = 0xA4
_REG_OPMENU0 = 0xA8
_REG_OPMENU1 = 0xAC
_REG_VSCC0 = 0xC4
_REG_VSCC1 = 0xC8
_REG_PTINX = 0xCC
_REG_PTDATA = 0xD0

_HSFLCTL_FDONE = 0x1
_HSFLCTL_FCERR = 0x2
_HSFLCTL_FGO = 0x10000
_SSFSTS_CDONE = 0x4
_SSFSTS_FCERR = 0x8
_SSFSTS_SCGO = 0x200

_CYCLE_READ = 0
_CYCLE_WRITE = 2
_CYCLE_READ_JEDEC = 6

_CYCLE_NAMES = ("Read", "", "Write", "Erase4K", "Erase64K", "ReadSFDP",
                "ReadJEDEC", "WriteStatus", "ReadStatus", "RPMCOp1",
                "RPMCOp2", "", "", "", "", "")


@dataclass
class SpiRegion:
    """A flash region: its bounds and the access the CSME has to it."""

    csme_readable: int = 0
    csme_writable: int = 0
    base: int = 0
    limit: int = 0


@dataclass
class SpiComponent:
    """A flash chip: its VSCC value and its parameter table."""

    vscc: int = 0
    par_data: list[int] = field(default_factory=lambda: [0] * PAR_WORDS)


class FastSpi(SimpleFunction):
    """Fast SPI PCI function; BAR 0 holds the controller registers."""

    def __init__(self, name: str) -> None:
        super().__init__(DeviceInstance(name), _BAR_SIZES, SimpleFlags.NONE)
        self.device.impl = self
        self.components = [SpiComponent() for _ in range(NUM_COMPONENTS)]
        self.regions = [SpiRegion() for _ in range(NUM_REGIONS)]
        self.jedec_id = [0] * JEDEC_WORDS
        self.faddr = 0
        self.hsflctl = 0
        self.ssfsts_ctl = 0
        self.buffer = bytearray(BUFFER_SIZE)
        self.ptinx = 0
        self.image: BinaryIO | None = None
        self.opmenu = [0, 0]
        self.sai = 0

    def __enter__(self) -> "FastSpi":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def open_image(self, path: str | os.PathLike) -> None:
        """Open the flash image for reading and writing; failure is fatal."""
        self.close()
        try:
            self.image = open(path, "r+b")
        except OSError:
            fatal(self.name, "Could not open image %s!", str(path))

    def close(self) -> None:
        """Close the flash image if one is open."""
        if self.image is not None:
            self.image.close()
            self.image = None

    def configure(self, section: ConfigSection) -> None:
        """Open the image and load regions, JEDEC ids and components from ``section``."""
        path = section.find_string("rom_image")
        logassert(path is not None, self.name, "No ROM image specified")
        self.open_image(path)
        for index, region in enumerate(self.regions):
            for attr in ("base", "limit", "csme_readable", "csme_writable"):
                value = section.find_int(f"region_{index}_{attr}", 32)
                if value is not None:
                    setattr(region, attr, value)
        for index in range(JEDEC_WORDS):
            value = section.find_int(f"jedec_{index:02X}", 32)
            if value is not None:
                self.jedec_id[index] = value
        for index, component in enumerate(self.components):
            value = section.find_int(f"comp_{index}_vscc", 32)
            if value is not None:
                component.vscc = value
            value = section.find_int(f"comp_{index}_par_data_0", 32)
            if value is not None:
                component.par_data[0] = value
        value = section.find_int("sai", 32)
        if value is not None:
            self.sai = value

    @staticmethod
    def _freg_index(addr: int) -> int | None:
        if _FREG_FIRST <= addr <= _FREG_LAST and not addr & 3:
            return (addr - _FREG_FIRST) // 4
        return None

    def _register_value(self, addr: int, count: int) -> int:
        if addr == _REG_HSFLCTL:
            return self.hsflctl
        if addr == _REG_FRAP:
            value = 0
            for bit, region in enumerate(self.regions[:8]):
                if region.csme_readable:
                    value |= 1 << bit
                if region.csme_writable:
                    value |= 1 << (bit + 8)
            return value
        index = self._freg_index(addr)
        if index is not None:
            region = self.regions[index]
            log(LogLevel.TRACE, self.name,
                "read CSXE_FREG%i count:%i base:%08x limit:%08x",
                index, count, region.base, region.limit)
            return ((region.base >> 12) & 0x7FFF) | ((region.limit << 4) & 0x7FFF0000)
        if addr == _REG_SSFSTS_CTL:
            return self.ssfsts_ctl
        if addr in (_REG_VSCC0, _REG_VSCC1):
            return self.components[(addr - _REG_VSCC0) // 4].vscc
        if addr == _REG_PTINX:
            return self.ptinx
        if addr == _REG_PTDATA:
            return self.pt_read()
        log(LogLevel.ERROR, self.name, "unknown reg read  0x%03x count:%i", addr, count)
        return 0

    def read(self, addr: int, count: int) -> bytes:
        """Read ``count`` bytes of the register file at ``addr``."""
        if _DATA_FIRST <= addr < _DATA_END:
            off = addr - _DATA_FIRST
            if off + count > BUFFER_SIZE:
                log(LogLevel.ERROR, self.name,
                    "bad data transfer with offset:%i count:%i", off, count)
                return bytes(count)
            return bytes(self.buffer[off:off + count])
        value = self._register_value(addr, count) & 0xFFFFFFFF
        return (value.to_bytes(4, "little") + bytes(max(0, count - 4)))[:count]

    def pt_read(self) -> int:
        """Read the parameter table word selected by the PTINX register."""
        comp = (self.ptinx >> 14) & 2
        hord = (self.ptinx >> 12) & 2
        dwi = (self.ptinx >> 2) & 0x1FF
        log(LogLevel.TRACE, self.name, "component %i par table read hord: %i dwi: %i",
            comp, hord, dwi)
        if hord != 2:
            return 0
        if comp >= len(self.components):
            log(LogLevel.ERROR, self.name, "par table read from missing component %i", comp)
            return 0
        return self.components[comp].par_data[dwi]

    def write(self, addr: int, data: bytes) -> int:
        """Write ``data`` to the register file at ``addr`` and run any started cycle."""
        count = len(data)
        if _DATA_FIRST <= addr < _DATA_END:
            off = addr - _DATA_FIRST
            if off + count > BUFFER_SIZE:
                log(LogLevel.ERROR, self.name,
                    "bad data transfer with offset:%i count:%i", off, count)
                return 1
            self.buffer[off:off + count] = data
            return 1
        value = int.from_bytes(bytes(data[:4]).ljust(4, b"\0"), "little")
        index = self._freg_index(addr)
        if addr == _REG_HSFLCTL:
            if self.hsflctl & _HSFLCTL_FGO:
                log(LogLevel.WARN, self.name,
                    "write CSXE_HSFLCTL ignored because F_GO is set")
            else:
                log(LogLevel.TRACE, self.name,
                    "write CSXE_HSFLCTL count:%i value:%08x", count, value)
                self.hsflctl &= ~(value & 7)
                self.hsflctl &= 0x0000E1FF
                self.hsflctl |= value & 0xFFFF0000
        elif addr == _REG_FADDR:
            self.faddr = value
        elif addr == _REG_PREOP_OPTYPE:
            log(LogLevel.TRACE, self.name,
                "write CSXE_PREOP_OPTYPE count:%i value:%08x", count, value)
        elif addr in (_REG_OPMENU0, _REG_OPMENU1):
            menu = (addr - _REG_OPMENU0) // 4
            log(LogLevel.TRACE, self.name,
                "write CSXE_OPMENU%i      count:%i value:%08x", menu, count, value)
            self.opmenu[menu] = value
        elif index is not None:
            region = self.regions[index]
            region.base = (value & 0x7FFF) << 12
            region.limit = (value & 0x7FFF0000) >> 4
            log(LogLevel.TRACE, self.name,
                "write CSXE_FREG%i count:%i base:%08x limit:%08x",
                index, count, region.base, region.limit)
        elif addr == _REG_SSFSTS_CTL:
            if self.ssfsts_ctl & _SSFSTS_SCGO:
                log(LogLevel.WARN, self.name,
                    "write CSXE_SSFSTS_CTL ignored because F_GO is set")
            else:
                self.ssfsts_ctl &= ~(value & 0xC)
                self.ssfsts_ctl &= 0x077F7EFF
                self.ssfsts_ctl |= value & 0x077F7E00
        elif addr == _REG_PTINX:
            self.ptinx = value
        else:
            log(LogLevel.TRACE, self.name, "write 0x%03x count:%i %x", addr, count, value)
        self.do_hwseq()
        self.do_swseq()
        return 1

    def _image_read(self, count: int) -> bytes:
        if self.image is None:
            raise OSError(errno.EBADF, "no flash image open")
        self.image.seek(self.faddr)
        data = self.image.read(count)
        if len(data) != count:
            raise OSError(errno.EIO, "short read from flash image")
        return data

    def _image_write(self, data: bytes) -> None:
        if self.image is None:
            raise OSError(errno.EBADF, "no flash image open")
        self.image.seek(self.faddr)
        if self.image.write(data) != len(data):
            raise OSError(errno.EIO, "short write to flash image")
        self.image.flush()

    def do_hwseq(self) -> None:
        """Run the hardware sequenced flash cycle if F_GO is set."""
        if not self.hsflctl & _HSFLCTL_FGO:
            return
        self.hsflctl &= ~_HSFLCTL_FGO
        fdbc = ((self.hsflctl >> 24) & 0x3F) + 1
        cycle = (self.hsflctl >> 17) & 0x0F
        log(LogLevel.TRACE, self.name, "Executing cycle: %s from %08x count: %i",
            _CYCLE_NAMES[cycle], self.faddr, fdbc)
        try:
            if cycle == _CYCLE_READ:
                self.buffer[:fdbc] = self._image_read(fdbc)
            elif cycle == _CYCLE_WRITE:
                current = self._image_read(fdbc)
                # Programming can only clear bits, as on real flash.
                for i, byte in enumerate(current):
                    self.buffer[i] &= byte
                self._image_write(bytes(self.buffer[:fdbc]))
            elif cycle == _CYCLE_READ_JEDEC:
                jedec = b"".join(w.to_bytes(4, "little") for w in self.jedec_id)
                self.buffer[:fdbc] = jedec[:fdbc]
        except OSError as exc:
            log(LogLevel.ERROR, self.name, "Flash error: %s", exc.strerror or str(exc))
            self.hsflctl |= _HSFLCTL_FCERR
            return
        self.hsflctl |= _HSFLCTL_FDONE

    def do_swseq(self) -> None:
        """Complete the software sequenced cycle if its go bit is set."""
        if not self.ssfsts_ctl & _SSFSTS_SCGO:
            return
        self.ssfsts_ctl &= ~_SSFSTS_SCGO
        dbc = ((self.ssfsts_ctl >> 16) & 0x3F) + 1
        cop = (self.ssfsts_ctl >> 12) & 0x07
        op = (self.opmenu[cop // 4] >> ((cop % 4) * 8)) & 0xFF
        log(LogLevel.TRACE, self.name, "Executing SPI cycle: cop: %i op:%02x count: %i",
            cop, op, dbc)
        self.ssfsts_ctl |= _SSFSTS_CDONE

    def bar_read(self, bar: int, offset: int, count: int) -> tuple[int, bytes] | None:
        if bar == 0:
            return self.sai, self.read(offset, count)
        log(LogLevel.ERROR, self.name, "Read to unimplemented bar")
        return None

    def bar_write(self, bar: int, offset: int, data: bytes) -> int | None:
        if bar == 0:
            self.write(offset, data)
            return self.sai
        log(LogLevel.ERROR, self.name, "Write to unimplemented bar")
        return None


def spawn_fastspi(section: ConfigSection, devices: DeviceRegistry,
                  buses: BusRegistry) -> DeviceInstance:
    """Create a Fast SPI controller from ``section``, attach it and register it."""
    spi = FastSpi(section.name)
    spi.configure(section)
    spi.setup(section, buses)
    devices.register(spi.device)
    return spi.device