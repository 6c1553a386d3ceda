from strokelink.bridge import DeviceSelector, SelectionPolicy
from strokelink.core import DeviceDescriptor


def _device(index, *capabilities):
    return DeviceDescriptor(index=index, name=f"device-{index}", capabilities=frozenset(capabilities))


def test_prefers_first_linear_device():
    devices = [_device(0), _device(1, "LinearCmd"), _device(2, "LinearCmd")]

    assert DeviceSelector().choose(devices).index == 1


def test_falls_back_to_first_device():
    assert DeviceSelector().choose([_device(0, "VibrateCmd")]).index == 0


def test_linear_only_refuses_fallback():
    selector = DeviceSelector(SelectionPolicy.LINEAR_ONLY)

    assert selector.choose([_device(0), _device(1, "VibrateCmd")]) is None
    assert selector.choose([_device(0), _device(4, "LinearCmd")]).index == 4


def test_empty_inventory_selects_nothing():
    assert DeviceSelector().choose([]) is None


def test_policy_accepts_config_strings():
    assert DeviceSelector("linear_only").policy is SelectionPolicy.LINEAR_ONLY
