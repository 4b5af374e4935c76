"""Routing of sideband accesses to devices by endpoint number."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from .log import LogLevel, log

__all__ = ["SidebandDevice", "SidebandRouter"]

MAX_DEVICES = 64


@dataclass(eq=False)
class SidebandDevice:
    """A sideband endpoint with its read and write handlers.

    ``read(bar, offset, count, sai)`` and ``write(bar, offset, data, sai)``
    return whatever the device reports for the access.
    """

    endpoint: int
    read: Callable[[int, int, int, int], Any]
    write: Callable[[int, int, bytes, int], Any]

    def __post_init__(self) -> None:
        if not 0 <= self.endpoint <= 0xFF:
            raise ValueError(f"sideband endpoint {self.endpoint} out of range")


class SidebandRouter:
    """Holds up to 64 devices; an access goes to the first one on its endpoint."""

    def __init__(self) -> None:
        self._devices: list[SidebandDevice] = []

    def register(self, device: SidebandDevice) -> None:
        if len(self._devices) >= MAX_DEVICES:
            raise OverflowError(f"at most {MAX_DEVICES} sideband devices can be registered")
        self._devices.append(device)

    def _find(self, endpoint: int) -> SidebandDevice | None:
        return next((d for d in self._devices if d.endpoint == endpoint), None)

    def read(self, endpoint: int, bar: int, address: int, count: int, sai: int) -> Any:
        """Read from the device on ``endpoint``; LookupError if there is none."""
        device = self._find(endpoint)
        if device is None:
            log(LogLevel.ERROR, "sideband", "Read to unknown endpoint %02X", endpoint)
            raise LookupError(f"unknown sideband endpoint {endpoint:02X}")
        return device.read(bar, address, count, sai)

    def write(self, endpoint: int, bar: int, address: int, data: bytes, sai: int) -> Any:
        """Write to the device on ``endpoint``; LookupError if there is none."""
        device = self._find(endpoint)
        if device is None:
            log(LogLevel.ERROR, "sideband", "Write to unknown endpoint %02X", endpoint)
            raise LookupError(f"unknown sideband endpoint {endpoint:02X}")
        return device.write(bar, address, data, sai)