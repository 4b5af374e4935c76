"""In-memory configuration: files made of typed sections of typed entries."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterator

__all__ = ["EntryType", "ConfigEntry", "ConfigSection", "ConfigFile"]

_INT_BITS = (8, 16, 32, 64)


class EntryType(enum.Enum):
    STRING = "$"
    ENUM = "%"
    INT64 = "&"


@dataclass
class ConfigEntry:
    """A named value in a section."""

    name: str
    type: EntryType
    value: Any
    size: int = 0


@dataclass
class ConfigSection:
    """A named, typed group of entries."""

    type: str
    name: str
    entries: list[ConfigEntry] = field(default_factory=list)

    def find_entry(self, name: str) -> ConfigEntry | None:
        """Return the first entry called ``name``, or None."""
        return next((e for e in self.entries if e.name == name), None)

    def find_string(self, name: str) -> str | None:
        """Return a string entry's value, or None if absent or not a string."""
        entry = self.find_entry(name)
        if entry is None or entry.type is not EntryType.STRING:
            return None
        return entry.value

    def find_int(self, name: str, bits: int) -> int | None:
        """Return an integer entry truncated to ``bits`` bits, or None."""
        if bits not in _INT_BITS:
            raise ValueError(f"unsupported integer width {bits}")
        entry = self.find_entry(name)
        if entry is None or entry.type is not EntryType.INT64:
            return None
        return entry.value & ((1 << bits) - 1)


@dataclass
class ConfigFile:
    """An ordered collection of sections."""

    name: str
    sections: list[ConfigSection] = field(default_factory=list)

    def add_section(self, section: ConfigSection) -> None:
        self.sections.append(section)

    def find_section(self, name: str) -> ConfigSection | None:
        """Return the first section called ``name``, or None."""
        return next((s for s in self.sections if s.name == name), None)

    def sections_of_type(self, type_name: str) -> Iterator[ConfigSection]:
        """Yield the sections of the given type, in file order."""
        return (s for s in self.sections if s.type == type_name)