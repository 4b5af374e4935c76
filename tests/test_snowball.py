import struct

import pytest

from melemu.config import ConfigEntry, ConfigFile, ConfigSection, EntryType
from melemu.log import FatalError
from melemu.snowball import BLOCK_HEADER_SIZE, SNOWBALL_CAPACITY, Snowball


def _section(name, **entries):
    items = []
    for key, value in entries.items():
        kind = EntryType.STRING if isinstance(value, str) else EntryType.INT64
        items.append(ConfigEntry(key, kind, value))
    return ConfigSection("snowball", name, items)


def _blocks(sb):
    data = sb.read(SNOWBALL_CAPACITY, SNOWBALL_CAPACITY)
    out = []
    pos = 0
    while pos < len(data):
        name, unk0, flags, size, unk1 = struct.unpack_from("<12sBBHH", data, pos)
        payload = data[pos + BLOCK_HEADER_SIZE:pos + size]
        out.append((name.rstrip(b"\0"), unk0, flags, unk1, payload))
        pos += size
    return out


def test_add_block_layout():
    sb = Snowball()
    sb.add("abc", 5, 2, b"xy", 7)
    data = sb.read(100, 100)
    assert data == (b"abc" + bytes(9) + bytes([5, 3]) + (20).to_bytes(2, "little")
                    + (7).to_bytes(2, "little") + b"xy")


def test_read_sizes_must_match():
    sb = Snowball()
    sb.add("a", 0, 0, b"1234", 0)
    assert sb.read(8, 4) == b""
    assert sb.pending == BLOCK_HEADER_SIZE + 4


def test_read_in_chunks():
    sb = Snowball()
    sb.add("name", 0, 0, b"payload", 0)
    total = sb.pending
    first = sb.read(10, 10)
    rest = sb.read(100, 100)
    assert len(first) == 10
    assert len(first) + len(rest) == total
    assert sb.read(10, 10) == b""


def test_block_that_does_not_fit_is_dropped():
    sb = Snowball()
    sb.add("big", 0, 0, bytes(SNOWBALL_CAPACITY - BLOCK_HEADER_SIZE), 0)
    assert sb.pending == 0


def test_long_name_is_truncated():
    sb = Snowball()
    sb.add("abcdefghijklmnop", 0, 0, b"", 0)
    assert _blocks(sb)[0][0] == b"abcdefghijkl"


def test_string_without_size():
    sb = Snowball()
    sb.add_section(_section("str", value="hello", flags=4))
    name, _, flags, _, payload = _blocks(sb)[0]
    assert name == b"str"
    assert flags == 5
    assert payload == b"hello"


def test_string_with_terminator():
    sb = Snowball()
    sb.add_section(_section("str", value="hi", size=3))
    assert _blocks(sb)[0][4] == b"hi\0"


def test_string_size_too_large():
    with pytest.raises(FatalError):
        Snowball().add_section(_section("str", value="hi", size=4))


def test_integer_value():
    sb = Snowball()
    sb.add_section(_section("num", value=0x11223344, size=4, unknown_0=2, unknown_1=9))
    _, unk0, _, unk1, payload = _blocks(sb)[0]
    assert payload == (0x11223344).to_bytes(4, "little")
    assert (unk0, unk1) == (2, 9)


@pytest.mark.parametrize("entries", [{"value": 1}, {"value": 1, "size": 9}])
def test_integer_value_errors(entries):
    with pytest.raises(FatalError):
        Snowball().add_section(_section("num", **entries))


def test_empty_value_is_zeros():
    sb = Snowball()
    sb.add_section(_section("zero", size=6))
    assert _blocks(sb)[0][4] == bytes(6)


def test_empty_value_needs_size():
    with pytest.raises(FatalError):
        Snowball().add_section(_section("zero"))


def test_path_value(tmp_path):
    path = tmp_path / "blob.bin"
    path.write_bytes(b"\x01\x02\x03")
    sb = Snowball()
    sb.add_section(_section("file", path=str(path)))
    assert _blocks(sb)[0][4] == b"\x01\x02\x03"


def test_init_from_config_uses_snowball_sections_only():
    config = ConfigFile("cfg")
    config.add_section(_section("one", value="a"))
    config.add_section(ConfigSection("other", "skip", [ConfigEntry("size", EntryType.INT64, 2)]))
    config.add_section(_section("two", value="b"))
    sb = Snowball()
    sb.init_from_config(config)
    assert [b[0] for b in _blocks(sb)] == [b"one", b"two"]