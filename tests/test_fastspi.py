import pytest

from melemu.config import ConfigEntry, ConfigSection, EntryType
from melemu.devreg import DeviceRegistry
from melemu.fastspi import FastSpi, spawn_fastspi
from melemu.log import FatalError
from melemu.pcibus import BusRegistry, PciBus


def _hsflctl(cycle, count):
    return (0x10000 | (cycle << 17) | ((count - 1) << 24)).to_bytes(4, "little")


def _u32(value):
    return value.to_bytes(4, "little")


@pytest.fixture
def image(tmp_path):
    path = tmp_path / "flash.bin"
    path.write_bytes(bytes(range(256)))
    return path


@pytest.fixture
def spi(image):
    dev = FastSpi("spi0")
    dev.open_image(image)
    yield dev
    dev.close()


def test_hwseq_read_fills_buffer(spi):
    spi.write(0x8, _u32(0x20))
    spi.write(0x4, _hsflctl(0, 4))
    assert spi.read(0x10, 4) == bytes(range(0x20, 0x24))
    status = int.from_bytes(spi.read(0x4, 4), "little")
    assert status & 1
    assert not status & 0x10000


def test_hwseq_write_emulates_erase(tmp_path):
    path = tmp_path / "zero.bin"
    path.write_bytes(bytes(64))
    with FastSpi("spi0") as dev:
        dev.open_image(path)
        dev.write(0x10, b"\x12\x34\x56\x78")
        dev.write(0x8, _u32(8))
        dev.write(0x4, _hsflctl(2, 4))
    assert path.read_bytes()[8:12] == bytes(4)


def test_hwseq_write_to_erased_flash(tmp_path):
    path = tmp_path / "erased.bin"
    path.write_bytes(b"\xff" * 64)
    with FastSpi("spi0") as dev:
        dev.open_image(path)
        dev.write(0x10, b"\x12\x34\x56\x78")
        dev.write(0x8, _u32(16))
        dev.write(0x4, _hsflctl(2, 4))
    assert path.read_bytes()[16:20] == b"\x12\x34\x56\x78"


def test_read_jedec(spi):
    spi.jedec_id[0] = 0x1840EF
    spi.write(0x4, _hsflctl(6, 4))
    assert spi.read(0x10, 4) == _u32(0x1840EF)


def test_flash_error_without_image():
    dev = FastSpi("spi0")
    dev.write(0x4, _hsflctl(0, 4))
    status = int.from_bytes(dev.read(0x4, 4), "little")
    assert status & 0x10003 == 2


def test_short_read_sets_error(spi):
    spi.write(0x8, _u32(0x100))
    spi.write(0x4, _hsflctl(0, 4))
    status = int.from_bytes(spi.read(0x4, 4), "little")
    assert status & 0x10003 == 2


def test_region_register_round_trip(spi):
    value = 0x00120010
    spi.write(0x54, _u32(value))
    assert spi.read(0x54, 4) == _u32(value)
    assert spi.regions[0].base == 0x10000


def test_region_access_bits(spi):
    spi.regions[0].csme_readable = 1
    spi.regions[1].csme_writable = 1
    assert int.from_bytes(spi.read(0x50, 4), "little") == (1 << 0) | (1 << 9)


def test_data_buffer_round_trip(spi):
    spi.write(0x20, b"abcd")
    assert spi.read(0x20, 4) == b"abcd"


def test_bad_buffer_transfer_is_ignored(spi):
    spi.write(0x4C, b"\x01" * 8)
    assert spi.read(0x4C, 4) == bytes(4)
    assert spi.read(0x4C, 8) == bytes(8)


def test_swseq_completes(spi):
    spi.write(0xA0, _u32(0x200))
    assert spi.read(0xA0, 4) == _u32(4)


def test_parameter_table_read(spi):
    spi.components[0].par_data[3] = 0xCAFE
    spi.write(0xCC, _u32(0x2000 | (3 << 2)))
    assert spi.read(0xD0, 4) == _u32(0xCAFE)


def test_parameter_table_needs_hord(spi):
    spi.components[0].par_data[3] = 0xCAFE
    spi.write(0xCC, _u32(3 << 2))
    assert spi.read(0xD0, 4) == bytes(4)


def test_opmenu_stored(spi):
    spi.write(0xAC, _u32(0x0B0A0908))
    assert spi.opmenu[1] == 0x0B0A0908


def test_open_missing_image_is_fatal(tmp_path):
    dev = FastSpi("spi0")
    with pytest.raises(FatalError):
        dev.open_image(tmp_path / "missing.bin")


def test_configure_requires_rom_image():
    with pytest.raises(FatalError):
        FastSpi("spi0").configure(ConfigSection("fastspi", "spi0"))


def test_bar_read_other_bar_unclaimed(spi):
    assert spi.bar_read(1, 0, 4) is None


def test_spawn_and_bus_access(image):
    buses = BusRegistry()
    bus = PciBus("pci0")
    buses.register(bus)
    devices = DeviceRegistry()
    ints = {
        "device_no": 31, "func_no": 5, "bar0": 0x80000000, "command": 2,
        "sai": 0x21, "comp_0_vscc": 0x2005, "region_2_base": 0x3000,
    }
    entries = [ConfigEntry(k, EntryType.INT64, v) for k, v in ints.items()]
    entries.append(ConfigEntry("rom_image", EntryType.STRING, str(image)))
    entries.append(ConfigEntry("bus", EntryType.STRING, "pci0"))
    section = ConfigSection("fastspi", "spi0", entries)

    device = spawn_fastspi(section, devices, buses)
    try:
        assert devices.find("spi0") is device
        assert device.impl.regions[2].base == 0x3000
        assert bus.mem_read(0x80000000 + 0xC4, 4, 0, 1) == (0x21, _u32(0x2005))
    finally:
        device.impl.close()