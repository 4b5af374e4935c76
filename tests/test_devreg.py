import pytest

from melemu.devreg import DeviceInstance, DeviceRegistry, DeviceType, RegistryError


def _spawn(*args):
    return DeviceInstance("spawned")


def test_register_and_find_type():
    registry = DeviceRegistry()
    kind = DeviceType("tracehub", _spawn)
    registry.register_type(kind)
    assert registry.find_type("tracehub") is kind
    assert registry.find_type("fastspi") is None


def test_found_type_spawns():
    registry = DeviceRegistry()
    registry.register_type(DeviceType("tracehub", _spawn))
    device = registry.find_type("tracehub").spawn()
    assert device.name == "spawned"


def test_duplicate_type_rejected():
    registry = DeviceRegistry()
    registry.register_type(DeviceType("tracehub", _spawn))
    with pytest.raises(RegistryError):
        registry.register_type(DeviceType("tracehub", _spawn))


def test_register_and_find_device():
    registry = DeviceRegistry()
    device = DeviceInstance("cpu0", impl={"kind": "cpu"})
    registry.register(device)
    assert registry.find("cpu0") is device
    assert registry.find("cpu0").impl == {"kind": "cpu"}
    assert registry.find("cpu1") is None


def test_duplicate_device_rejected():
    registry = DeviceRegistry()
    registry.register(DeviceInstance("spi"))
    with pytest.raises(RegistryError):
        registry.register(DeviceInstance("spi"))


def test_types_and_devices_are_separate_namespaces():
    registry = DeviceRegistry()
    registry.register_type(DeviceType("spi", _spawn))
    registry.register(DeviceInstance("spi"))
    assert registry.find("spi").name == registry.find_type("spi").name