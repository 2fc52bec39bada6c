#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Test the command-line interface."""

import json

from broadlink_protocol import __version__
from broadlink_protocol.__main__ import arun
from broadlink_protocol.packet import build_command_packet, pad_to

from tests.common import LOCALHOST, RM3_IDENTITY, SP2_IDENTITY, FakeRemote

IR_CODE_HEX = "2600480000012894121212"


async def test_version(capsys):
    assert await arun(["version"]) == 0
    assert capsys.readouterr().out.strip() == __version__


async def test_classify(capsys):
    assert await arun(["classify", "0x27c2"]) == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary == {
        "identity": "0x27c2",
        "model": "rm3",
        "family": "remote",
        "label": "RM mini 3 IR remote blaster",
    }


async def test_classify_decimal(capsys):
    assert await arun(["classify", str(0x7539)]) == 0
    assert json.loads(capsys.readouterr().out)["model"] == "sp2"


async def test_classify_unsupported(capsys):
    assert await arun(["classify", "0x6666"]) == 1
    assert "Device identifying itself as '26214' is not currently supported" in capsys.readouterr().err


async def test_missing_command(capsys):
    assert await arun([]) == 1


async def test_bad_option():
    assert await arun(["classify"]) == 2


def write_config(tmp_path, device):
    config_file = tmp_path / "broadlink.json"
    config_file.write_text(json.dumps({
        "bind_address": LOCALHOST,
        "bind_port": 0,
        "local_address": LOCALHOST,
        "discovery_port": device.endpoint[1],
        "discovery_timeout": 0.2,
        "command_timeout": 1.0,
    }))
    return str(config_file)


async def test_discover(tmp_path, capsys, fake_device_factory):
    device = await fake_device_factory(FakeRemote(RM3_IDENTITY, name="Den"))
    rc = await arun(["--config", write_config(tmp_path, device), "discover", "--broadcast-address", LOCALHOST])
    assert rc == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["host"] == LOCALHOST
    assert summary["port"] == device.endpoint[1]
    assert summary["mac"] == "11:22:33:44:55:66"
    assert summary["model"] == "rm3"
    assert summary["name"] == "Den"


async def test_send_hex_code(tmp_path, fake_device_factory):
    fake = FakeRemote(RM3_IDENTITY)
    device = await fake_device_factory(fake)
    rc = await arun(["--config", write_config(tmp_path, device), "send", "--host", LOCALHOST, IR_CODE_HEX])
    assert rc == 0
    assert fake.commands == [pad_to(build_command_packet(0x02, bytes.fromhex(IR_CODE_HEX)))]


async def test_send_named_command(tmp_path, fake_device_factory):
    fake = FakeRemote(RM3_IDENTITY)
    device = await fake_device_factory(fake)
    map_file = tmp_path / "tv.map"
    map_file.write_text(f"POWER={IR_CODE_HEX}\n")
    rc = await arun([
        "--config", write_config(tmp_path, device),
        "send", "--host", LOCALHOST, "--command", "POWER", "--map-file", str(map_file),
      ])
    assert rc == 0
    assert len(fake.commands) == 1


async def test_send_unknown_command(tmp_path, capsys, fake_device_factory):
    device = await fake_device_factory(FakeRemote(RM3_IDENTITY))
    map_file = tmp_path / "tv.map"
    map_file.write_text(f"POWER={IR_CODE_HEX}\n")
    rc = await arun([
        "--config", write_config(tmp_path, device),
        "send", "--host", LOCALHOST, "--command", "MUTE", "--map-file", str(map_file),
      ])
    assert rc == 1
    assert "MUTE" in capsys.readouterr().err


async def test_send_to_plug_is_refused(tmp_path, capsys, fake_device_factory):
    fake = FakeRemote(SP2_IDENTITY)
    device = await fake_device_factory(fake)
    rc = await arun(["--config", write_config(tmp_path, device), "send", "--host", LOCALHOST, IR_CODE_HEX])
    assert rc == 1
    assert "not a remote blaster" in capsys.readouterr().err
    assert fake.commands == []
