import pytest

from melemu.config import ConfigEntry, ConfigFile, ConfigSection, EntryType
from melemu.mipitrace import MsgType, TraceDecoder, TraceMessage


def _packet(header, payload):
    msgs = [TraceMessage(MsgType.DNTS, 4, header),
            TraceMessage(MsgType.DN, 2, len(payload))]
    pos = 0
    for width in (4, 2, 1):
        while pos + width <= len(payload):
            msgs.append(TraceMessage.from_bytes(MsgType.DN, payload[pos:pos + width]))
            pos += width
    msgs.append(TraceMessage(MsgType.FLAG, 4, 0))
    return msgs


def _feed_all(decoder, master, channel, msgs):
    lines = []
    for msg in msgs:
        lines.extend(decoder.feed(master, channel, msg))
    return lines


def _decoder():
    seen = []
    decoder = TraceDecoder(sink=lambda module, line: seen.append((module, line)))
    return decoder, seen


def test_msg_type_labels():
    assert MsgType.DNTS.label == "DnTS"
    assert MsgType.MERR.label == "MERR"
    assert MsgType(6) is MsgType.FLAG


def test_message_views_and_from_bytes():
    msg = TraceMessage.from_bytes(MsgType.DN, b"\x01\x02\x03\x04")
    assert msg.size == 4
    assert msg.d8 == 0x01
    assert msg.d16 == 0x0201
    assert msg.d32 == int.from_bytes(b"\x01\x02\x03\x04", "little")


def test_from_bytes_rejects_odd_width():
    with pytest.raises(ValueError):
        TraceMessage.from_bytes(MsgType.DN, b"\x00\x00\x00")


def test_debug_string_split_into_lines():
    decoder, seen = _decoder()
    lines = _feed_all(decoder, 1, 5, _packet(2, b"hi\nthere"))
    assert lines == ["hi", "there"]
    assert seen == [("sven", "hi"), ("sven", "there")]


def test_debug_string_with_mixed_widths():
    decoder, _ = _decoder()
    assert _feed_all(decoder, 0, 0, _packet(2, b"abcdefg")) == ["abcdefg"]


def test_catalog_message_uses_dictionary():
    decoder, _ = _decoder()
    section = ConfigSection("sven", "msg_0x0000000200000001",
                            [ConfigEntry("message", EntryType.STRING, "value %d")])
    decoder.load_dictionary(ConfigFile("dict", [section]))
    payload = (1).to_bytes(4, "little") + (2).to_bytes(4, "little") + (42).to_bytes(4, "little")
    assert _feed_all(decoder, 3, 1, _packet(3, payload)) == ["value 42"]


def test_catalog_message_without_dictionary_prints_raw_words():
    decoder, _ = _decoder()
    payload = (1).to_bytes(4, "little") + (2).to_bytes(4, "little") + (42).to_bytes(4, "little")
    assert _feed_all(decoder, 3, 1, _packet(3, payload)) == ["00000001000000020000002A"]


def test_decode_sven_stops_at_nul():
    decoder, _ = _decoder()
    assert decoder.decode_sven(2, b"one\x00junk") == ["one"]


def test_decode_sven_ignores_other_types():
    decoder, seen = _decoder()
    assert decoder.decode_sven(5, b"text") == []
    assert seen == []


def test_packet_must_start_with_timestamped_header():
    decoder, _ = _decoder()
    msgs = _packet(2, b"abcd")
    msgs[0] = TraceMessage(MsgType.DN, 4, 2)
    assert _feed_all(decoder, 0, 0, msgs) == []
    assert _feed_all(decoder, 0, 0, _packet(2, b"ok")) == ["ok"]


def test_nonzero_flag_drops_packet():
    decoder, _ = _decoder()
    msgs = _packet(2, b"abcd")
    msgs[-1] = TraceMessage(MsgType.FLAG, 4, 1)
    assert _feed_all(decoder, 0, 0, msgs) == []
    assert _feed_all(decoder, 0, 0, _packet(2, b"next")) == ["next"]


def test_interleaved_master_resets_buffer(capsys):
    decoder, _ = _decoder()
    partial = _packet(2, b"lost")[:2]
    assert _feed_all(decoder, 1, 0, partial) == []
    assert _feed_all(decoder, 2, 0, _packet(2, b"kept")) == ["kept"]
    assert "interleaved masters" in capsys.readouterr().err


def test_overflow_drops_messages(capsys):
    decoder, _ = _decoder()
    for _ in range(70):
        assert decoder.feed(0, 0, TraceMessage(MsgType.DN, 4, 0)) == []
    assert "Trace buffer overflow" in capsys.readouterr().err