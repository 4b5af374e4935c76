"""Manifest extensions: lookup and decoding of the typed records of a module manifest."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass

__all__ = [
    "ExtensionType", "ProcessAttributes", "ThreadInfo", "MmioRange",
    "ModuleAttributes", "SharedLibrary", "LockedRange", "find_extension",
    "parse_process", "parse_threads", "parse_mmio_ranges",
    "parse_module_attributes", "parse_shared_library", "parse_locked_ranges",
]

PROC_ATTR_FLAG_FAULT_TOLERANT = 1 << 0
PROC_ATTR_FLAG_PERMANENT_PROCESS = 1 << 1
PROC_ATTR_FLAG_SINGLE_INSTANCE = 1 << 2
PROC_ATTR_FLAG_TRUSTED_SND_REV_SENDER = 1 << 3
PROC_ATTR_FLAG_TRUSTED_NOTIFY_SENDER = 1 << 4
PROC_ATTR_FLAG_PUBLIC_SND_REV_RECEIVER = 1 << 5
PROC_ATTR_FLAG_PUBLIC_NOTIFY_RECEIVER = 1 << 6
MAN_THREAD_FLAG0 = 1 << 0

_HEADER = struct.Struct("<II")
_PROCESS = struct.Struct("<10I12sHIHQ")
_THREAD = struct.Struct("<III")
_MMIO = struct.Struct("<III")
_MOD_ATTR = struct.Struct("<IIB3sIIHH128s")
_SHLIB = struct.Struct("<7I")
_LOCKED = struct.Struct("<II")


class ExtensionType(enum.IntEnum):
    """Type tags of manifest extensions."""

    SHARED_LIB = 4
    PROCESS = 5
    THREADS = 6
    MMIO_RANGES = 8
    MODULE_ATTR = 10
    LOCKED_RANGES = 11


@dataclass(frozen=True)
class ProcessAttributes:
    flags: int
    main_thread_id: int
    priv_code_base_address: int
    uncompressed_priv_code_size: int
    cm0_heap_size: int
    bss_size: int
    default_heap_size: int
    main_thread_entry: int
    allowed_sys_calls: bytes
    user_id: int
    group_ids: tuple[int, ...]


@dataclass(frozen=True)
class ThreadInfo:
    stack_size: int
    flags: int
    scheduling_policy: int


@dataclass(frozen=True)
class MmioRange:
    base: int
    limit: int
    flags: int


@dataclass(frozen=True)
class ModuleAttributes:
    compression_type: int
    uncompressed_size: int
    compressed_size: int
    module_number: int
    vendor_id: int
    hash: bytes


@dataclass(frozen=True)
class SharedLibrary:
    context_size: int
    total_alloc_virtual_space: int
    code_base_address: int
    tls_size: int


@dataclass(frozen=True)
class LockedRange:
    base: int
    size: int


def find_extension(manifest: bytes, ext_type: int) -> bytes | None:
    """Return the first extension of type ``ext_type``, header included, or None."""
    data = bytes(manifest)
    pos = 0
    while pos < len(data):
        if pos + _HEADER.size > len(data):
            raise ValueError(f"truncated extension header at offset 0x{pos:x}")
        typ, length = _HEADER.unpack_from(data, pos)
        if length < _HEADER.size:
            raise ValueError(f"invalid extension length {length} at offset 0x{pos:x}")
        if typ == ext_type:
            return data[pos:pos + length]
        pos += length
    return None


def _extension_length(data: bytes, ext_type: ExtensionType, fixed: int) -> int:
    if len(data) < _HEADER.size:
        raise ValueError("extension is shorter than its header")
    typ, length = _HEADER.unpack_from(data)
    if typ != ext_type:
        raise ValueError(f"expected extension type {int(ext_type)}, got {typ}")
    if length < fixed:
        raise ValueError(f"extension length {length} is below the minimum {fixed}")
    if length > len(data):
        raise ValueError(f"extension length {length} exceeds the {len(data)} bytes given")
    return length


def _records(data: bytes, ext_type: ExtensionType, record: struct.Struct) -> list[tuple]:
    length = _extension_length(data, ext_type, _HEADER.size)
    count = (length - _HEADER.size) // record.size
    return [record.unpack_from(data, _HEADER.size + i * record.size) for i in range(count)]


def parse_process(data: bytes) -> ProcessAttributes:
    """Decode a process attribute extension."""
    length = _extension_length(data, ExtensionType.PROCESS, _PROCESS.size)
    (_, _, flags, main_thread_id, code_base, code_size, cm0_heap, bss,
     heap, entry, sys_calls, user_id, _, _, _) = _PROCESS.unpack_from(data)
    count = (length - _PROCESS.size) // 2
    group_ids = struct.unpack_from(f"<{count}H", data, _PROCESS.size)
    return ProcessAttributes(flags, main_thread_id, code_base, code_size,
                             cm0_heap, bss, heap, entry, sys_calls, user_id,
                             tuple(group_ids))


def parse_threads(data: bytes) -> list[ThreadInfo]:
    """Decode a thread info extension."""
    return [ThreadInfo(*r) for r in _records(data, ExtensionType.THREADS, _THREAD)]


def parse_mmio_ranges(data: bytes) -> list[MmioRange]:
    """Decode an MMIO ranges extension."""
    return [MmioRange(*r) for r in _records(data, ExtensionType.MMIO_RANGES, _MMIO)]


def parse_module_attributes(data: bytes) -> ModuleAttributes:
    """Decode a module attribute extension."""
    _extension_length(data, ExtensionType.MODULE_ATTR, _MOD_ATTR.size)
    (_, _, compression, _, uncompressed, compressed, number, vendor,
     digest) = _MOD_ATTR.unpack_from(data)
    return ModuleAttributes(compression, uncompressed, compressed, number, vendor, digest)


def parse_shared_library(data: bytes) -> SharedLibrary:
    """Decode a shared library extension."""
    _extension_length(data, ExtensionType.SHARED_LIB, _SHLIB.size)
    _, _, context, total, code_base, tls, _ = _SHLIB.unpack_from(data)
    return SharedLibrary(context, total, code_base, tls)


def parse_locked_ranges(data: bytes) -> list[LockedRange]:
    """Decode a locked ranges extension."""
    return [LockedRange(*r) for r in _records(data, ExtensionType.LOCKED_RANGES, _LOCKED)]