import pytest

from melemu.log import FatalError
from melemu.thunks import insert_thunk, insert_thunk_rec, install_thunks

BASE = 0x1000


class _Section:
    def __init__(self, values):
        self._values = values

    def find_int(self, name, bits):
        return self._values.get(name)


def _jump_target(image, address):
    off = address - BASE
    rel = int.from_bytes(image[off + 1:off + 5], "little", signed=True)
    return address + 5 + rel


def test_thunk_to_next_instruction_has_zero_operand():
    image = bytearray(0x100)
    insert_thunk(image, BASE, BASE, BASE + 5)
    assert image[:5] == b"\xe9\x00\x00\x00\x00"


@pytest.mark.parametrize("wr,target", [(BASE + 0x10, BASE + 0x80),
                                       (BASE + 0x80, BASE + 0x10),
                                       (BASE, 0x7FFF0000)])
def test_thunk_lands_on_target(wr, target):
    image = bytearray(0x100)
    insert_thunk(image, BASE, wr, target)
    assert image[wr - BASE] == 0xE9
    assert _jump_target(image, wr) == target


def test_thunk_outside_image_is_rejected():
    image = bytearray(0x10)
    with pytest.raises(ValueError):
        insert_thunk(image, BASE, BASE + 0xE, BASE)


def test_recursive_thunk_patches_jump_destination():
    image = bytearray(0x100)
    insert_thunk(image, BASE, BASE, BASE + 0x40)
    insert_thunk_rec(image, BASE, BASE, BASE + 0x90)
    assert _jump_target(image, BASE) == BASE + 0x40
    assert _jump_target(image, BASE + 0x40) == BASE + 0x90


def test_recursive_thunk_requires_jump():
    image = bytearray(0x100)
    with pytest.raises(FatalError):
        insert_thunk_rec(image, BASE, BASE, BASE + 0x40)


def test_install_only_configured_names():
    image = bytearray(0x100)
    section = _Section({"tstamp_read": BASE + 0x20})
    installed = install_thunks(image, BASE, section,
                               {"tstamp_read": BASE + 0x60, "read_seg": BASE + 0x70})
    assert installed == ["tstamp_read"]
    assert _jump_target(image, BASE + 0x20) == BASE + 0x60
    assert image[0x70 - 0x10:] == bytes(len(image) - 0x60)


def test_install_with_recursive_names():
    image = bytearray(0x100)
    insert_thunk(image, BASE, BASE + 0x30, BASE + 0x50)
    section = _Section({"kernelcall": BASE, "get_tls_ptr": BASE + 0x30})
    installed = install_thunks(image, BASE, section,
                               {"kernelcall": BASE + 0x90, "get_tls_ptr": BASE + 0xA0},
                               {"get_tls_ptr"})
    assert installed == ["kernelcall", "get_tls_ptr"]
    assert _jump_target(image, BASE) == BASE + 0x90
    assert _jump_target(image, BASE + 0x30) == BASE + 0x50
    assert _jump_target(image, BASE + 0x50) == BASE + 0xA0