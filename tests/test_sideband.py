import pytest

from melemu.sideband import SidebandDevice, SidebandRouter


def _device(endpoint, calls, tag):
    def read(bar, offset, count, sai):
        calls.append((tag, "read", bar, offset, count, sai))
        return bytes([endpoint]) * count

    def write(bar, offset, data, sai):
        calls.append((tag, "write", bar, offset, data, sai))
        return sai

    return SidebandDevice(endpoint, read, write)


def test_read_routes_by_endpoint():
    calls = []
    router = SidebandRouter()
    router.register(_device(0x10, calls, "a"))
    router.register(_device(0x20, calls, "b"))
    assert router.read(0x20, 1, 0x44, 3, 9) == bytes([0x20]) * 3
    assert calls == [("b", "read", 1, 0x44, 3, 9)]


def test_write_routes_and_returns_device_result():
    calls = []
    router = SidebandRouter()
    router.register(_device(0x10, calls, "a"))
    assert router.write(0x10, 0, 8, b"\x01\x02", 5) == 5
    assert calls == [("a", "write", 0, 8, b"\x01\x02", 5)]


def test_first_registered_device_wins():
    calls = []
    router = SidebandRouter()
    router.register(_device(0x30, calls, "first"))
    router.register(_device(0x30, calls, "second"))
    router.read(0x30, 0, 0, 1, 0)
    assert [c[0] for c in calls] == ["first"]


def test_unknown_endpoint_raises():
    router = SidebandRouter()
    router.register(_device(0x10, [], "a"))
    with pytest.raises(LookupError):
        router.read(0x11, 0, 0, 4, 0)
    with pytest.raises(LookupError):
        router.write(0x11, 0, 0, b"\x00", 0)


def test_registration_limit():
    router = SidebandRouter()
    for endpoint in range(64):
        router.register(_device(endpoint, [], endpoint))
    with pytest.raises(OverflowError):
        router.register(_device(100, [], "extra"))


def test_endpoint_must_fit_a_byte():
    with pytest.raises(ValueError):
        _device(0x100, [], "bad")