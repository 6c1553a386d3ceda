from pathlib import Path

import pytest

from strokelink import cli


@pytest.fixture
def started(monkeypatch):
    calls = []

    def fake_bridge_start(config, key=None):
        calls.append(("bridge", config, key))
        return 0

    def fake_controller_start(config, key=None):
        calls.append(("controller", config, key))
        return 0

    monkeypatch.setattr(cli.BridgeApp, "start", fake_bridge_start)
    monkeypatch.setattr(cli.ControllerApp, "start", fake_controller_start)
    return calls


def test_missing_session_key_exits_without_starting(tmp_path: Path, started, capsys):
    exit_code = cli.main(["-c", str(tmp_path / "strokelink.cfg"), "bridge"])

    assert exit_code == 2
    assert started == []
    assert "session key" in capsys.readouterr().err


def test_bridge_uses_cli_overrides(tmp_path: Path, started):
    exit_code = cli.main(
        [
            "-c",
            str(tmp_path / "strokelink.cfg"),
            "bridge",
            "--key",
            "kitchen",
            "--relay-url",
            "wss://relay.example/ws",
            "--hardware-url",
            "ws://127.0.0.1:12346",
        ]
    )

    assert exit_code == 0
    ((role, config, key),) = started
    assert role == "bridge"
    assert key == "kitchen"
    assert config.relay.url == "wss://relay.example/ws"
    assert config.hardware.url == "ws://127.0.0.1:12346"


def test_controller_takes_key_from_relay_url(tmp_path: Path, started):
    exit_code = cli.main(
        [
            "-c",
            str(tmp_path / "strokelink.cfg"),
            "controller",
            "--relay-url",
            "ws://relay.example/ws?key=porch",
            "--model",
            "sampled",
        ]
    )

    assert exit_code == 0
    ((role, config, key),) = started
    assert role == "controller"
    assert key == "porch"
    assert config.motion.model == "sampled"


def test_invalid_config_exits_with_usage_error(tmp_path: Path, started, capsys):
    config_file = tmp_path / "strokelink.cfg"
    config_file.write_text("[motion]\nmodel = wobbly\n", encoding="utf-8")

    assert cli.main(["-c", str(config_file), "controller", "--key", "x"]) == 2
    assert started == []
    assert "wobbly" in capsys.readouterr().err


def test_show_config_prints_sections(tmp_path: Path, capsys):
    assert cli.main(["-c", str(tmp_path / "strokelink.cfg"), "show-config"]) == 0

    output = capsys.readouterr().out
    assert "[relay]" in output
    assert "[motion]" in output
    assert "model = spring" in output


def test_model_choice_is_validated(tmp_path: Path):
    with pytest.raises(SystemExit):
        cli.main(["-c", str(tmp_path / "strokelink.cfg"), "controller", "--model", "elastic"])
