import pytest

from solar_bridge import cli
from solar_bridge.channel import SendOutcome
from solar_bridge.config import load_config
from solar_bridge.protocol import OutboundCommand


def test_show_config_prints_sections(tmp_path, capsys) -> None:
    config_path = tmp_path / "solar-bridge.cfg"

    assert cli.main(["-c", str(config_path), "-p", "/dev/ttyUSB7", "show-config"]) == 0

    output = capsys.readouterr().out
    assert "[serial]" in output
    assert "port = /dev/ttyUSB7" in output
    assert "[mqtt]" in output


def test_invalid_config_returns_error(tmp_path) -> None:
    config_path = tmp_path / "solar-bridge.cfg"
    config_path.write_text("[health]\nport = eighty\n", encoding="utf-8")

    assert cli.main(["-c", str(config_path), "show-config"]) == 1


def test_send_rejects_unknown_token(tmp_path) -> None:
    config_path = tmp_path / "solar-bridge.cfg"

    assert cli.main(["-c", str(config_path), "send", "JUMP"]) == 1


def test_send_requires_a_token() -> None:
    with pytest.raises(SystemExit):
        cli.main(["send"])


@pytest.mark.asyncio
async def test_send_once_writes_command(tmp_path, serial_port) -> None:
    config = load_config(tmp_path / "solar-bridge.cfg")

    outcome = await cli.send_once(
        config, OutboundCommand.horizontal(45), opener=serial_port
    )

    assert outcome is SendOutcome.SENT
    assert serial_port.writer.lines == ["H45"]
    assert serial_port.writer.is_closing()


@pytest.mark.asyncio
async def test_send_once_reports_unavailable_port(tmp_path, serial_port) -> None:
    serial_port.fail_with = OSError("no such device")
    config = load_config(tmp_path / "solar-bridge.cfg")

    outcome = await cli.send_once(config, OutboundCommand.stop(), opener=serial_port)

    assert outcome is SendOutcome.NOT_CONNECTED
