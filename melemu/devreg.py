"""Registry of device types and of spawned device instances."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

__all__ = ["RegistryError", "DeviceInstance", "DeviceType", "DeviceRegistry"]


class RegistryError(LookupError):
    """Raised when a device or device type name is registered twice."""


@dataclass(eq=False)
class DeviceInstance:
    """A named device that has been spawned from a configuration section."""

    name: str
    impl: Any = None


@dataclass(eq=False)
class DeviceType:
    """A kind of device, with the callable that spawns instances of it."""

    name: str
    spawn: Callable[..., DeviceInstance]


class DeviceRegistry:
    """Name-indexed collections of device types and device instances."""

    def __init__(self) -> None:
        self._types: dict[str, DeviceType] = {}
        self._devices: dict[str, DeviceInstance] = {}

    def register_type(self, device_type: DeviceType) -> None:
        """Add a device type; its name must not be taken yet."""
        if device_type.name in self._types:
            raise RegistryError(f"device type {device_type.name!r} is already registered")
        self._types[device_type.name] = device_type

    def find_type(self, name: str) -> DeviceType | None:
        """Return the device type called ``name``, or None."""
        return self._types.get(name)

    def register(self, device: DeviceInstance) -> None:
        """Add a device instance; its name must not be taken yet."""
        if device.name in self._devices:
            raise RegistryError(f"device {device.name!r} is already registered")
        self._devices[device.name] = device

    def find(self, name: str) -> DeviceInstance | None:
        """Return the device instance called ``name``, or None."""
        return self._devices.get(name)