#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Test packet construction and parsing."""

import datetime
import random
import struct

import pytest

from broadlink_protocol import MalformedPacket, PayloadCipher, ReplyKind
from broadlink_protocol.constants import ENVELOPE_MAGIC
from broadlink_protocol.packet import (
    build_auth_payload,
    build_command_packet,
    build_discovery_packet,
    build_envelope,
    checksum,
    has_valid_checksum,
    pad_to,
    parse_auth_payload,
    parse_command_packet,
    parse_reply,
)

from tests.common import DEVICE_MAC, RM4_IDENTITY, make_discovery_reply, restamp_checksum


def test_checksum():
    assert checksum(b"") == 0xbeaf
    assert checksum(b"\x01\x02") == 0xbeb2
    assert checksum(b"\xff" * 0x200) == 0xbcaf


@pytest.mark.parametrize("payload_length, packet_length", [(0, 16), (12, 16), (13, 32), (28, 32), (44, 48)])
def test_command_packet_padding(payload_length, packet_length):
    payload = bytes(range(1, payload_length + 1))
    packet = build_command_packet(0x02, payload)
    assert len(packet) == packet_length
    assert packet[0] == 0x02
    assert packet[1:4] == b"\x00\x00\x00"
    assert packet[4:4 + payload_length] == payload
    assert packet[4 + payload_length:] == bytes(packet_length - 4 - payload_length)


def test_pad_to_does_not_add_a_block_on_a_boundary():
    assert pad_to(bytes(32)) == bytes(32)
    assert pad_to(b"\x01") == b"\x01" + bytes(15)


def test_command_type_must_fit_in_a_byte():
    with pytest.raises(ValueError):
        build_command_packet(0x100, b"")


def test_parse_framed_packet():
    reply = parse_reply(build_command_packet(0x02, b"abc"))
    assert reply.kind == ReplyKind.FRAMED
    assert reply.command_type == 0x02
    assert reply.payload[:3] == b"abc"


@pytest.mark.parametrize("payload_length", [0, 1, 12, 13, 28, 44, 60, 200, 1000])
def test_framed_packet_round_trip(payload_length):
    rng = random.Random(payload_length)
    command_type = rng.randrange(1, 0x100)
    payload = bytes(rng.randrange(0x100) for _ in range(payload_length))

    reply = parse_reply(build_command_packet(command_type, payload))

    assert reply.kind == ReplyKind.FRAMED
    assert reply.command_type == command_type
    assert reply.payload[:payload_length] == payload


def make_checksum_colliding_payload():
    # Payload offset 0x1c lands on the envelope checksum, 0x22 on the envelope code
    payload = bytearray(b"\x11" * 44)
    payload[0x1c:0x1e] = b"\x00\x00"
    payload[0x22:0x24] = b"\x00\x00"
    payload[0x1c:0x1e] = struct.pack('<H', checksum(build_command_packet(0x02, bytes(payload))))
    return bytes(payload)


def test_framed_packet_with_valid_checksum_is_not_an_envelope():
    payload = make_checksum_colliding_payload()
    packet = build_command_packet(0x02, payload)
    assert len(packet) == 48
    assert has_valid_checksum(packet)

    reply = parse_reply(packet)

    assert reply.kind == ReplyKind.FRAMED
    assert reply.command_type == 0x02
    assert reply.payload[:44] == payload


def test_parse_command_packet():
    packet = build_command_packet(0x00, bytes(44))
    reply = parse_command_packet(packet)
    assert reply.kind == ReplyKind.FRAMED
    assert reply.command_type == 0x00
    assert reply.payload == bytes(44)

    with pytest.raises(MalformedPacket):
        parse_command_packet(bytes(20))


@pytest.mark.parametrize("datagram", [b"", b"\x01\x02\x03", bytes(20), bytes(47)])
def test_parse_malformed(datagram):
    with pytest.raises(MalformedPacket):
        parse_reply(datagram)


def test_discovery_packet_layout():
    now = datetime.datetime(2024, 3, 5, 14, 30, 15, tzinfo=datetime.timezone(datetime.timedelta(hours=-5)))
    packet = build_discovery_packet("192.168.0.1", 2048, now)
    assert len(packet) == 48
    assert struct.unpack('<i', packet[0x08:0x0c])[0] == -5
    assert struct.unpack('<H', packet[0x0c:0x0e])[0] == 2024
    assert list(packet[0x0e:0x14]) == [15, 30, 14, 2, 5, 3]
    assert packet[0x18:0x1c] == bytes([1, 0, 168, 192])
    assert struct.unpack('<H', packet[0x1c:0x1e])[0] == 2048
    assert packet[0x26] == 0x06
    assert has_valid_checksum(packet)
    assert parse_reply(packet).kind == ReplyKind.DISCOVERY_REQUEST


def test_discovery_packet_rejects_bad_port():
    with pytest.raises(ValueError):
        build_discovery_packet("192.168.0.1", 0)


def test_parse_discovery_reply():
    reply = parse_reply(make_discovery_reply(RM4_IDENTITY, host="10.1.2.3", name="Bedroom", locked=True))
    assert reply.kind == ReplyKind.DISCOVERY_REPLY
    assert reply.device_identity == RM4_IDENTITY
    assert reply.host == "10.1.2.3"
    assert reply.mac == DEVICE_MAC
    assert reply.mac_address == "11:22:33:44:55:66"
    assert reply.name == "Bedroom"
    assert reply.is_locked


def test_truncated_discovery_reply():
    with pytest.raises(MalformedPacket):
        parse_reply(restamp_checksum(bytearray(make_discovery_reply()[:0x30])))


def test_corrupt_checksum_is_not_an_envelope():
    data = bytearray(make_discovery_reply())
    data[0x40] ^= 0xff
    # 0x80 bytes is a multiple of 16, so it falls back to a framed packet
    assert parse_reply(bytes(data)).kind == ReplyKind.FRAMED


def test_envelope():
    cipher = PayloadCipher()
    packet = build_envelope(0x6a, b"hello", count=3, mac=DEVICE_MAC, device_id=0x01020304, cipher=cipher)
    assert len(packet) == 0x38 + 16
    assert packet[:8] == ENVELOPE_MAGIC
    assert struct.unpack('<H', packet[0x24:0x26])[0] == 0x272a
    assert struct.unpack('<H', packet[0x34:0x36])[0] == checksum(b"hello" + bytes(11))
    assert has_valid_checksum(packet)

    reply = parse_reply(packet)
    assert reply.kind == ReplyKind.COMMAND_REPLY
    assert reply.command_type == 0x6a
    assert reply.count == 3
    assert reply.mac == DEVICE_MAC
    assert reply.device_id == 0x01020304
    assert reply.error_code == 0
    assert reply.decrypt_payload(cipher) == b"hello" + bytes(11)
    assert packet[0x38:] != b"hello" + bytes(11)


def test_envelope_requires_six_byte_mac():
    with pytest.raises(ValueError):
        build_envelope(0x6a, b"", count=1, mac=b"\x01\x02", device_id=0, cipher=PayloadCipher())


def test_auth_payload():
    payload = build_auth_payload("tester")
    assert len(payload) == 0x50
    assert payload[0x04:0x13] == b"\x31" * 15
    assert payload[0x30:0x36] == b"tester"

    device_id, key = parse_auth_payload(struct.pack('<I', 42) + bytes(range(16)))
    assert device_id == 42
    assert key == bytes(range(16))

    with pytest.raises(MalformedPacket):
        parse_auth_payload(bytes(10))


def test_cipher():
    cipher = PayloadCipher()
    data = bytes(range(32))
    encrypted = cipher.encrypt(data)
    assert encrypted != data
    assert cipher.decrypt(encrypted) == data

    other = cipher.with_key(bytes(16))
    assert other.iv == cipher.iv
    assert other.encrypt(data) != encrypted

    with pytest.raises(ValueError):
        cipher.encrypt(b"\x01")
    with pytest.raises(MalformedPacket):
        cipher.decrypt(b"\x01")
