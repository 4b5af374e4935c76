"""Peripheral, address-space layout and kernel-service emulation for management-engine firmware modules."""

__version__ = "0.1.0"