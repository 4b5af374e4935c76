"""Address space layout of loaded modules and libraries, and their thread stacks."""

from __future__ import annotations

from dataclasses import dataclass, field

from .log import FatalError, LogLevel, log
from .manifest import (
    ExtensionType,
    find_extension,
    parse_locked_ranges,
    parse_mmio_ranges,
    parse_module_attributes,
    parse_process,
    parse_shared_library,
    parse_threads,
)

__all__ = ["LoaderError", "Thread", "Segment", "ModuleLayout", "LibraryLayout",
           "populate_ranges_mod", "populate_ranges_shlib", "populate_ranges_romlib"]

GUARD_PAGE = 0x1000
_TLS_SLOT = 0x4
_STACK_RESERVE = 0x14


class LoaderError(FatalError):
    """Raised when a module cannot be laid out."""

    def __init__(self, message: str) -> None:
        super().__init__("loader", message)


def _require(cond: object, message: str) -> None:
    if not cond:
        log(LogLevel.FATAL, "loader", "%s", message)
        raise LoaderError(message)


@dataclass
class Thread:
    """A module thread and its stack."""

    thread_id: int
    stack_top: int
    stack_size: int
    entry_point: int = 0

    @property
    def stack_base(self) -> int:
        return self.stack_top - self.stack_size


@dataclass
class Segment:
    """An MMIO segment the module may address."""

    base: int
    limit: int


@dataclass
class ModuleLayout:
    """Where the parts of a process module live in its address space."""

    text_base: int
    text_size: int
    rodata_base: int
    rodata_size: int
    heap_base: int
    heap_size: int
    bss_base: int
    bss_size: int
    threads: list[Thread] = field(default_factory=list)
    segments: list[Segment] = field(default_factory=list)

    def thread_for_stack(self, address: int) -> int:
        """Return the index of the thread whose stack holds ``address``."""
        for index, thread in enumerate(self.threads):
            if thread.stack_base <= address <= thread.stack_top:
                return index
        log(LogLevel.ERROR, "krnl", "Unknown thread: Unrecognised stack address 0x%08x.",
            address)
        raise LookupError(f"no thread stack holds address 0x{address:08x}")

    def thread_tls(self, index: int) -> int:
        """Return the address of thread ``index``'s TLS self pointer."""
        return self.threads[index].stack_top - _TLS_SLOT

    def initial_stack(self, index: int, args: bytes) -> tuple[int, bytes]:
        """Build the start stack of thread ``index``.

        Returns the initial stack pointer and the bytes from there up to the
        stack top: the arguments, a reserved area and the TLS self pointer.
        """
        thread = self.threads[index]
        args = bytes(args)
        if len(args) + _STACK_RESERVE > thread.stack_size:
            raise ValueError(f"{len(args)} bytes of arguments do not fit on the stack")
        log(LogLevel.INFO, "krnl", "Starting thread %i: entry = 0x%08x stack = 0x%08x",
            index, thread.entry_point, thread.stack_top)
        tls = thread.stack_top - _TLS_SLOT
        stack_pointer = thread.stack_top - _STACK_RESERVE - len(args)
        memory = (args + bytes(_STACK_RESERVE - _TLS_SLOT)
                  + (tls & 0xFFFFFFFF).to_bytes(4, "little"))
        return stack_pointer, memory


@dataclass
class LibraryLayout:
    """Where a library image and its zeroed area live."""

    load_base: int
    load_size: int
    bss_base: int
    bss_size: int
    context_size: int


def _extension(manifest: bytes, ext_type: ExtensionType, what: str) -> bytes:
    data = find_extension(manifest, ext_type)
    _require(data is not None, f"Manifest did not contain {what} extension")
    return data


def populate_ranges_mod(manifest: bytes, context_size: int) -> ModuleLayout:
    """Lay out a process module from its manifest."""
    mod_attr = parse_module_attributes(
        _extension(manifest, ExtensionType.MODULE_ATTR, "mod_attr"))
    thread_infos = parse_threads(_extension(manifest, ExtensionType.THREADS, "threads"))
    process = parse_process(_extension(manifest, ExtensionType.PROCESS, "process"))
    mmios = parse_mmio_ranges(_extension(manifest, ExtensionType.MMIO_RANGES, "mmio"))
    _require(thread_infos, "Manifest did not declare any threads")

    text_base = process.priv_code_base_address
    text_size = process.uncompressed_priv_code_size
    rodata_base = text_base + text_size
    rodata_size = mod_attr.uncompressed_size - text_size
    next_base = rodata_base + rodata_size

    threads = []
    for offset, info in enumerate(thread_infos):
        next_base += GUARD_PAGE + info.stack_size
        threads.append(Thread(process.main_thread_id + offset, next_base, info.stack_size))
    threads[0].entry_point = process.main_thread_entry

    segments = [Segment(r.base, r.limit) for r in mmios]

    heap_base = next_base
    heap_size = process.default_heap_size
    bss_base = heap_base + heap_size
    bss_size = process.bss_size + context_size
    log(LogLevel.DEBUG, "loader", "bss: 0x%08x size: %x ctxs: %x",
        bss_base, process.bss_size, context_size)

    return ModuleLayout(text_base, text_size, rodata_base, rodata_size,
                        heap_base, heap_size, bss_base, bss_size, threads, segments)


def populate_ranges_shlib(manifest: bytes) -> LibraryLayout:
    """Lay out a shared library from its manifest."""
    mod_attr = parse_module_attributes(
        _extension(manifest, ExtensionType.MODULE_ATTR, "mod_attr"))
    shlib = parse_shared_library(
        _extension(manifest, ExtensionType.SHARED_LIB, "shared lib"))
    ranges = parse_locked_ranges(
        _extension(manifest, ExtensionType.LOCKED_RANGES, "locked ranges"))
    _require(ranges, "Locked range extension is empty")

    load_base = ranges[0].base
    load_size = mod_attr.uncompressed_size
    return LibraryLayout(load_base, load_size, load_base + load_size,
                         shlib.total_alloc_virtual_space - load_size,
                         shlib.context_size)


def populate_ranges_romlib(base: int, size: int) -> LibraryLayout:
    """Lay out a ROM image of ``size`` bytes loaded at ``base``."""
    return LibraryLayout(base, size, base + size, 0, 0)