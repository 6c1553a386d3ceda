import json

import pytest

from strokelink.core import CommandEnvelope, CommandKind
from strokelink.protocol import ProtocolError, hardware, relay


def test_request_server_info_shape():
    assert hardware.request_server_info(1, "WebToyClient", 3) == [
        {"RequestServerInfo": {"Id": 1, "ClientName": "WebToyClient", "MessageVersion": 3}}
    ]


def test_encode_move_command():
    command = CommandEnvelope(
        id=7, device_index=2, kind=CommandKind.MOVE, position=0.25, duration_ms=80
    )

    assert hardware.encode_command(command) == [
        {
            "LinearCmd": {
                "Id": 7,
                "DeviceIndex": 2,
                "Vectors": [{"Index": 0, "Duration": 80, "Position": 0.25}],
            }
        }
    ]


def test_encode_stop_command():
    command = CommandEnvelope(id=4, device_index=0, kind=CommandKind.STOP)

    assert hardware.encode_command(command) == [{"StopDeviceCmd": {"Id": 4, "DeviceIndex": 0}}]


def test_move_command_requires_position_in_range():
    with pytest.raises(ValueError):
        CommandEnvelope(id=2, device_index=0, kind=CommandKind.MOVE, duration_ms=50)
    with pytest.raises(ValueError):
        CommandEnvelope(id=2, device_index=0, kind=CommandKind.MOVE, position=1.5, duration_ms=50)


def test_iter_hardware_messages_handles_batches():
    frame = [{"Ok": {"Id": 5}}, {"DeviceRemoved": {"Id": 0, "DeviceIndex": 1}}]

    assert list(hardware.iter_hardware_messages(frame)) == [
        ("Ok", {"Id": 5}),
        ("DeviceRemoved", {"Id": 0, "DeviceIndex": 1}),
    ]


def test_iter_hardware_messages_accepts_bare_object():
    assert list(hardware.iter_hardware_messages({"Ok": {"Id": 1}})) == [("Ok", {"Id": 1})]


@pytest.mark.parametrize(
    "frame",
    [
        "Ok",
        [{"Ok": {"Id": 1}, "Error": {"Id": 1}}],
        [{"Ok": 5}],
        ["Ok"],
    ],
)
def test_iter_hardware_messages_rejects_malformed_frames(frame):
    with pytest.raises(ProtocolError):
        list(hardware.iter_hardware_messages(frame))


def test_message_id_ignores_non_integers():
    assert hardware.message_id({"Id": 9}) == 9
    assert hardware.message_id({"Id": "9"}) is None
    assert hardware.message_id({"Id": True}) is None


def test_control_marks_final_frames_only():
    assert relay.control(0.5, 0.2, 50) == {
        "type": "control",
        "position": 0.5,
        "speed": 0.2,
        "sampleIntervalMs": 50,
    }
    assert relay.control(0.5, 0.05, 50, is_final=True)["isFinal"] is True


def test_status_omits_missing_device_index():
    assert relay.status("waiting_device") == {"type": "status", "state": "waiting_device"}
    assert relay.status("device_ready", 0)["deviceIndex"] == 0


def test_command_batch_serializes_each_command():
    stop = CommandEnvelope(id=10, device_index=1, kind=CommandKind.STOP)
    move = CommandEnvelope(id=11, device_index=1, kind=CommandKind.MOVE, position=0.6, duration_ms=50)

    batch = relay.command_batch(stop, move)

    assert list(batch) == ["commands"]
    decoded = [json.loads(item) for item in batch["commands"]]
    assert decoded[0] == [{"StopDeviceCmd": {"Id": 10, "DeviceIndex": 1}}]
    assert decoded[1][0]["LinearCmd"]["Id"] == 11
    assert " " not in batch["commands"][0]


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ({"type": "ping"}, True),
        ({"type": "pong"}, True),
        ({"commands": []}, True),
        ({"commands": ["[]"]}, False),
        ({"type": "status", "state": "ready"}, False),
        ([{"type": "ping"}], False),
    ],
)
def test_is_heartbeat(message, expected):
    assert relay.is_heartbeat(message) is expected


def test_iter_relay_messages_flattens_arrays():
    assert list(relay.iter_relay_messages([{"type": "a"}, {"type": "b"}])) == [
        {"type": "a"},
        {"type": "b"},
    ]
    assert list(relay.iter_relay_messages({"type": "a"})) == [{"type": "a"}]


def test_message_type():
    assert relay.message_type({"type": "status"}) == "status"
    assert relay.message_type({"commands": []}) is None
    with pytest.raises(ProtocolError):
        relay.message_type({"type": 4})
