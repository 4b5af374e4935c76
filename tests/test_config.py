import pytest

from melemu.config import ConfigEntry, ConfigFile, ConfigSection, EntryType


def _section(name, type_name="device", **values):
    entries = [
        ConfigEntry(key, EntryType.STRING, v) if isinstance(v, str)
        else ConfigEntry(key, EntryType.INT64, v)
        for key, v in values.items()
    ]
    return ConfigSection(type_name, name, entries)


def test_find_section():
    cfg = ConfigFile("test.cfg")
    first = _section("alpha")
    cfg.add_section(first)
    cfg.add_section(_section("beta"))
    assert cfg.find_section("alpha") is first
    assert cfg.find_section("gamma") is None


def test_find_section_returns_first_duplicate():
    cfg = ConfigFile("dup.cfg")
    first = _section("same", value=1)
    cfg.add_section(first)
    cfg.add_section(_section("same", value=2))
    assert cfg.find_section("same") is first


def test_sections_of_type_keeps_order():
    cfg = ConfigFile("t.cfg")
    for name, kind in [("a", "snowball"), ("b", "device"), ("c", "snowball")]:
        cfg.add_section(_section(name, kind))
    assert [s.name for s in cfg.sections_of_type("snowball")] == ["a", "c"]


def test_find_string():
    section = _section("s", path="rom.bin", base=0x1000)
    assert section.find_string("path") == "rom.bin"
    assert section.find_string("base") is None
    assert section.find_string("missing") is None


def test_find_entry():
    section = _section("s", base=0x1000)
    entry = section.find_entry("base")
    assert entry.name == "base"
    assert entry.value == 0x1000
    assert section.find_entry("nope") is None


@pytest.mark.parametrize("bits", [8, 16, 32, 64])
def test_find_int_truncates(bits):
    value = 0x1122334455667788
    section = _section("s", v=value)
    assert section.find_int("v", bits) == value & ((1 << bits) - 1)


def test_find_int_bad_width():
    with pytest.raises(ValueError):
        _section("s", v=1).find_int("v", 12)