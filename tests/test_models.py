import pytest

from strokelink.core import (
    CommandIdAllocator,
    DeviceDescriptor,
    MotionLimits,
    SessionContext,
    StrokeRange,
)
from strokelink.session import Role


@pytest.mark.parametrize("bounds", [(0.0, 1.0), (0.2, 0.6), (0.35, 0.35), (0.9, 1.0)])
def test_stroke_range_map_stays_inside_window(bounds):
    stroke = StrokeRange(*bounds)

    for value in (-0.5, 0.0, 0.1, 0.333, 0.5, 0.999, 1.0, 2.0):
        mapped = stroke.map(value)
        assert stroke.min <= mapped <= stroke.max


def test_stroke_range_map_is_affine():
    stroke = StrokeRange(0.2, 0.6)

    assert stroke.map(0.0) == pytest.approx(0.2)
    assert stroke.map(0.5) == pytest.approx(0.4)
    assert stroke.map(1.0) == pytest.approx(0.6)


@pytest.mark.parametrize("bounds", [(0.6, 0.2), (-0.1, 0.5), (0.5, 1.1)])
def test_stroke_range_rejects_invalid_bounds(bounds):
    with pytest.raises(ValueError):
        StrokeRange(*bounds)


def test_stroke_handles_never_cross():
    stroke = StrokeRange(0.3, 0.7)

    assert stroke.with_min(0.9) == StrokeRange(0.7, 0.7)
    assert stroke.with_max(0.1) == StrokeRange(0.3, 0.3)
    assert stroke.with_min(-1.0) == StrokeRange(0.0, 0.7)


def test_motion_limits_clamp_speed():
    limits = MotionLimits(max_speed=0.4)

    assert limits.clamp_speed(0.2) == 0.2
    assert limits.clamp_speed(0.9) == 0.4
    assert limits.clamp_speed(-1.0) == 0.0


def test_command_ids_strictly_increase_after_handshake_id():
    allocator = CommandIdAllocator()

    ids = [allocator.next() for _ in range(50)]

    assert ids[0] == 2
    assert all(later > earlier for earlier, later in zip(ids, ids[1:]))
    assert allocator.last == ids[-1]


def test_command_ids_cannot_reuse_handshake_id():
    with pytest.raises(ValueError):
        CommandIdAllocator(start=1)


def test_device_descriptor_from_message():
    device = DeviceDescriptor.from_message(
        {"DeviceIndex": 3, "DeviceName": "Stroker", "DeviceMessages": {"LinearCmd": {}, "StopDeviceCmd": {}}}
    )

    assert device.index == 3
    assert device.name == "Stroker"
    assert device.supports_linear is True


def test_device_descriptor_requires_integer_index():
    with pytest.raises(ValueError):
        DeviceDescriptor.from_message({"DeviceName": "Nameless"})


def test_session_context_requires_key():
    with pytest.raises(ValueError):
        SessionContext(key="", role=Role.BRIDGE)
