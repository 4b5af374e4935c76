# melemu

`melemu` is a pure-Python library that models the environment management-engine
firmware modules run in: the peripherals they talk to, the address-space layout
their manifests describe, and the kernel services they call. It uses only the
standard library and supports Python 3.10 and later.

## What is in the package

| Module | Contents |
| --- | --- |
| `melemu.numfmt` | `format_signed`, `format_unsigned` and the `NumFlag` flags (zero padding, forced `+`) |
| `melemu.printf` | a restricted printf-style formatter: `vformat`, `cformat`, `snformat`, `cprintf`, `FormatError` |
| `melemu.log` | levelled output to standard error: `LogLevel`, `log`, `fatal`, `logassert`, `set_level`, `get_level`, `FatalError` |
| `melemu.config` | in-memory configuration: `ConfigFile`, `ConfigSection`, `ConfigEntry`, `EntryType` |
| `melemu.fileutil` | `file_size`, `read_full_file` |
| `melemu.devreg` | `DeviceRegistry`, `DeviceType`, `DeviceInstance`, `RegistryError` |
| `melemu.pcibus` | `ConfigSpace`, `PciFunction`, `PciBus`, `BusRegistry`, `PciError` and address helpers (`pack_bdf`, `pack_addr`, `addr_bus`, ...) |
| `melemu.pcidevice` | `SimpleFunction` (BAR-decoded memory cycles), `SimpleFlags`, `handle_type0`, `handle_device` |
| `melemu.sideband` | `SidebandDevice`, `SidebandRouter` |
| `melemu.mipitrace` | MIPI trace packet reassembly and SVEN decoding: `TraceDecoder`, `TraceMessage`, `MsgType` |
| `melemu.tracehub` | the trace hub PCI function `TraceHub`, `spawn_tracehub`, `ftmr_msgtype` |
| `melemu.fastspi` | the Fast SPI flash controller `FastSpi` backed by an image file, `spawn_fastspi`, `SpiRegion`, `SpiComponent` |
| `melemu.manifest` | `find_extension` and parsers for process, thread, MMIO, module attribute, shared library and locked range extensions |
| `melemu.module` | `populate_ranges_mod`, `populate_ranges_shlib`, `populate_ranges_romlib`, `ModuleLayout`, `LibraryLayout`, `Thread`, `Segment`, `LoaderError` |
| `melemu.grant` | `GrantTable`, `GrantDescriptor`, `GrantFlags`, `DmaLockParams`, `dma_unlock` |
| `melemu.snowball` | the ROM hand-off block queue `Snowball` |
| `melemu.memory` | `SegmentMemory`, `SegmentFault`, `FrontSideBus`, `RomLib`, `dma_read`, `dma_write` |
| `melemu.thunks` | `insert_thunk`, `insert_thunk_rec`, `install_thunks` for patching relative jumps into an image |
| `melemu.kernelcall` | `KernelCallTable`, `KernelCall`, `default_table`, `tls_pointer` |

## Formatting and logging

```python
from melemu.printf import cformat, snformat
from melemu.log import LogLevel, log, set_level

cformat("msg_0x%08x%08x", 0x1234, 0xABCD)   # 'msg_0x000012340000ABCD'
snformat(8, "%s", "truncated text")         # 'truncat'

set_level(LogLevel.TRACE)
log(LogLevel.INFO, "loader", "mapped %i threads", 3)
```

Hex conversions print upper-case digits. `%n` and unknown conversions raise
`FormatError`. `fatal` and a failing `logassert` print a FATAL line and raise
`FatalError`.

## PCI devices

Configuration is built in memory from `ConfigSection` and `ConfigEntry`
objects. A peripheral section names its bus, device and function numbers,
its command register and its BARs:

```python
from melemu.config import ConfigEntry, ConfigSection, EntryType
from melemu.devreg import DeviceRegistry
from melemu.pcibus import BusRegistry, PciBus, pack_addr
from melemu.tracehub import spawn_tracehub

buses = BusRegistry()
devices = DeviceRegistry()
bus = PciBus("sa")
buses.register(bus)

section = ConfigSection("tracehub", "thub", [
    ConfigEntry("device_no", EntryType.INT64, 31),
    ConfigEntry("func_no", EntryType.INT64, 7),
    ConfigEntry("bus", EntryType.STRING, "sa"),
    ConfigEntry("command", EntryType.INT64, 0x2),      # memory space enabled
    ConfigEntry("bar0", EntryType.INT64, 0xFE000000),
    ConfigEntry("bar3", EntryType.INT64, 0xFA000000),
    ConfigEntry("fake_probe", EntryType.INT64, 1),
])
spawn_tracehub(section, devices, buses)

bus.config_read(pack_addr(0, 31, 7, 0), 4)            # vendor and device id bytes
bus.mem_read(0xFE0000E0, 4, sai=0, max_lat=1)         # (1, b'\x00\x00\x00\x01')
```

`PciBus.mem_read` and `mem_write` offer the cycle to every function on the
bus once per simulated latency step, up to `max_lat` steps, and return `None`
when nobody claims it. Writes to the trace hub's BAR 3 become
`TraceMessage`s that the hub's `TraceDecoder` reassembles into packets and
prints as SVEN text; `TraceDecoder.load_dictionary` supplies catalog message
formats from a `ConfigFile`.

`spawn_fastspi` does the same for the Fast SPI controller; its section must
name a `rom_image` file, which is opened for reading and writing and serves
the hardware-sequenced read, write and JEDEC-id cycles.

## Modules and kernel services

`find_extension` locates a typed extension in a manifest blob.
`populate_ranges_mod(manifest, context_size)` returns a `ModuleLayout` with
the text, rodata, heap and bss ranges, one `Thread` per declared stack and
one `Segment` per MMIO range; `populate_ranges_shlib` and
`populate_ranges_romlib` return a `LibraryLayout`. `ModuleLayout.initial_stack`
builds a thread's start stack and `thread_for_stack` finds the thread that
owns a stack address.

`default_table(snowball, grants)` returns a `KernelCallTable` serving the
snowball read (call 0), grant list sync (5), extended DMA lock (26) and DMA
unlock (27) calls; `dispatch` returns 0 for unknown calls and wrong parameter
sizes. `SegmentMemory` resolves local segment selectors against a module's
segments and forwards accesses through a `FrontSideBus`; `RomLib` offers the
ROM's timestamp and segment read/write routines on top of it.

## What the package does not do

- There is no command to run: the package is a library and installs no scripts.
- Configuration is only held in memory; there is no parser for configuration
  files.
- Layouts are computed but no module code is mapped into memory or executed,
  and no CPU or system agent model is included. `FrontSideBus` only holds the
  callables a caller provides.
- Of the PCI cycles, only configuration and memory cycles reach devices in
  practice; the I/O cycles run only if functions are given I/O handlers.