"""Kernel call dispatch for the system library, and thread local storage lookup."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from .grant import DmaLockParams, GrantDescriptor, GrantTable, dma_unlock
from .log import LogLevel, log
from .module import ModuleLayout
from .snowball import Snowball

__all__ = ["KernelCall", "KernelCallTable", "default_table", "tls_pointer"]

SNOWBALL_READ = 0
MG_SYNCLIST = 5
DMA_LOCK_EX = 26
DMA_UNLOCK = 27


@dataclass(frozen=True)
class KernelCall:
    """A kernel call: its name, the size of its parameter block and its handler."""

    name: str
    size: int
    impl: Callable[[Any], int]


class KernelCallTable:
    """Kernel calls indexed by call number."""

    def __init__(self) -> None:
        self._calls: dict[int, KernelCall] = {}

    def register(self, call_id: int, name: str, size: int,
                 impl: Callable[[Any], int]) -> None:
        if not 0 <= call_id <= 0xFF:
            raise ValueError(f"kernel call number {call_id} out of range")
        if not 0 <= size <= 0xFFFF:
            raise ValueError(f"parameter size {size} out of range")
        if call_id in self._calls:
            raise ValueError(f"kernel call {call_id} is already registered")
        self._calls[call_id] = KernelCall(name, size, impl)

    def dispatch(self, call_id: int, par_size: int, par: Any) -> int:
        """Run call ``call_id``; unknown calls and wrong sizes return 0."""
        call = self._calls.get(call_id)
        if call is None:
            log(LogLevel.ERROR, "libc", "syscall( %i, %i ) not impl", call_id, par_size)
            return 0
        if par_size != call.size:
            log(LogLevel.ERROR, "libc", "syscall( %i, %i ) wrong size", call_id, par_size)
            return 0
        return call.impl(par)


def default_table(snowball: Snowball, grants: GrantTable) -> KernelCallTable:
    """Build the table of calls the emulated kernel serves.

    The snowball read call takes an object with ``size`` and ``size2``
    and gets ``data`` and ``actualsize`` set on it.
    """

    def snowball_read(par: Any) -> int:
        data = snowball.read(par.size, par.size2)
        par.data = data
        par.actualsize = len(data)
        return 0

    def mg_synclist(par: Any) -> int:
        if isinstance(par, (bytes, bytearray, memoryview)):
            par = GrantDescriptor.unpack_all(bytes(par))
        return grants.sync(par)

    def dma_lock_ex(par: DmaLockParams) -> int:
        return grants.dma_lock_ex(par)

    table = KernelCallTable()
    table.register(SNOWBALL_READ, "sys_snowball_read", 16, snowball_read)
    table.register(MG_SYNCLIST, "sys_mg_synclist", 8, mg_synclist)
    table.register(DMA_LOCK_EX, "sys_dma_lock_ex", DmaLockParams.SIZE, dma_lock_ex)
    table.register(DMA_UNLOCK, "sys_dma_unlock", 4, dma_unlock)
    return table


def tls_pointer(layout: ModuleLayout, stack_address: int, index: int) -> int:
    """Return the address of TLS slot ``index`` of the thread owning ``stack_address``."""
    thread = layout.thread_for_stack(stack_address)
    return layout.thread_tls(thread) - 4 * index