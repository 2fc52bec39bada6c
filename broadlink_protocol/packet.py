#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Construction and parsing of Broadlink protocol packets.

Two layouts are in use:

  Framed command packets, which carry a single device command:

      offset  size  meaning
      0       1     command type (e.g., 0x02 = send IR/RF code)
      1       3     reserved, zero
      4       N     payload
      4+N     ...   zero padding up to the next multiple of 16

  Envelopes, which carry discovery requests/replies and (encrypted) framed command
  packets between this host and a device. Every envelope has a 16-bit checksum at
  0x20 covering the whole datagram, and a 16-bit command/reply code at 0x26.
  Envelopes addressed to an authenticated device additionally carry a 0x38-byte
  header followed by the AES encrypted payload.

All byte offsets used by the protocol live in this module.
"""

from __future__ import annotations

import datetime
import struct
import time
from enum import Enum

from .internal_types import *
from .constants import (
    BLOCK_SIZE,
    CHECKSUM_SEED,
    CLIENT_DEVICE_TYPE,
    CMD_DISCOVERY,
    CMD_DISCOVERY_REPLY,
    COMMAND_PREAMBLE_LENGTH,
    DISCOVERY_PACKET_LENGTH,
    DISCOVERY_REPLY_MIN_LENGTH,
    ENVELOPE_HEADER_LENGTH,
    ENVELOPE_MAGIC,
    MIN_PACKET_LENGTH,
  )
from .exceptions import MalformedPacket
from .cipher import PayloadCipher
from .util import ipv4_to_wire, wire_to_ipv4, format_mac

# Envelope field offsets
_CHECKSUM_OFFSET = 0x20
_ERROR_CODE_OFFSET = 0x22
_DEVICE_TYPE_OFFSET = 0x24
_COMMAND_OFFSET = 0x26
_COUNT_OFFSET = 0x28
_MAC_OFFSET = 0x2a
_DEVICE_ID_OFFSET = 0x30
_PAYLOAD_CHECKSUM_OFFSET = 0x34

# Discovery reply field offsets
_REPLY_IDENTITY_OFFSET = 0x34
_REPLY_ADDRESS_OFFSET = 0x36
_REPLY_MAC_OFFSET = 0x3a
_REPLY_NAME_OFFSET = 0x40
_REPLY_LOCK_OFFSET = 0x7f

AUTH_PAYLOAD_LENGTH = 0x50
_AUTH_NAME_OFFSET = 0x30

def checksum(data: bytes) -> int:
    """The 16-bit additive checksum used throughout the protocol, seeded with 0xbeaf."""
    return (CHECKSUM_SEED + sum(data)) & 0xffff

def pad_to(data: bytes, block_size: int=BLOCK_SIZE) -> bytes:
    """Appends zero bytes up to the next multiple of block_size.

       Data that already ends on a block boundary is returned unchanged (no extra
       block is added), and data is never truncated.
    """
    remainder = len(data) % block_size
    if remainder == 0:
        return bytes(data)
    return bytes(data) + bytes(block_size - remainder)

def _stamp_checksum(packet: bytearray) -> None:
    packet[_CHECKSUM_OFFSET:_CHECKSUM_OFFSET + 2] = b"\x00\x00"
    packet[_CHECKSUM_OFFSET:_CHECKSUM_OFFSET + 2] = struct.pack('<H', checksum(packet))

def has_valid_checksum(data: bytes) -> bool:
    """True if data is long enough to be an envelope and its checksum at 0x20 matches."""
    if len(data) < DISCOVERY_PACKET_LENGTH:
        return False
    stored = int.from_bytes(data[_CHECKSUM_OFFSET:_CHECKSUM_OFFSET + 2], 'little')
    scratch = bytearray(data)
    scratch[_CHECKSUM_OFFSET:_CHECKSUM_OFFSET + 2] = b"\x00\x00"
    return checksum(scratch) == stored

def build_discovery_packet(
        local_address: str,
        local_port: int,
        now: Optional[datetime.datetime]=None
      ) -> bytes:
    """Builds the 48-byte discovery request that is broadcast to find devices.

    Parameters:
        local_address:  The LAN IPv4 address of this host; devices record it.
        local_port:     The UDP port replies should be sent to.
        now:            The local time to embed. Defaults to datetime.datetime.now().
                        If it is timezone-aware its UTC offset is used, otherwise the
                        offset of the local timezone.
    """
    if not 0 < local_port < 0x10000:
        raise ValueError(f"Invalid local port: {local_port}")
    if now is None:
        now = datetime.datetime.now()
    utc_offset = now.utcoffset()
    if utc_offset is None:
        tz_hours = int(-time.timezone / 3600)
    else:
        tz_hours = int(utc_offset.total_seconds() // 3600)

    packet = bytearray(DISCOVERY_PACKET_LENGTH)
    packet[0x08:0x0c] = struct.pack('<i', tz_hours)
    packet[0x0c:0x0e] = struct.pack('<H', now.year)
    packet[0x0e] = now.second
    packet[0x0f] = now.minute
    packet[0x10] = now.hour
    packet[0x11] = now.isoweekday()
    packet[0x12] = now.day
    packet[0x13] = now.month
    packet[0x18:0x1c] = ipv4_to_wire(local_address)
    packet[0x1c:0x1e] = struct.pack('<H', local_port)
    packet[_COMMAND_OFFSET] = CMD_DISCOVERY
    _stamp_checksum(packet)
    return bytes(packet)

def build_command_packet(command_type: int, payload: bytes) -> bytes:
    """Frames a device command: a 4-byte preamble whose first byte is command_type,
       followed by payload, zero padded to a multiple of 16 bytes."""
    if not 0 <= command_type <= 0xff:
        raise ValueError(f"Command type must fit in one byte: {command_type}")
    preamble = bytearray(COMMAND_PREAMBLE_LENGTH)
    preamble[0] = command_type
    return pad_to(bytes(preamble) + bytes(payload))

def build_envelope(
        command: int,
        payload: bytes,
        *,
        count: int,
        mac: bytes,
        device_id: int,
        cipher: PayloadCipher,
        device_type: int=CLIENT_DEVICE_TYPE,
      ) -> bytes:
    """Builds an envelope addressed to a specific device.

    Parameters:
        command:      The envelope command code (e.g., 0x65 authenticate, 0x6a command).
        payload:      The cleartext payload; it is padded and then encrypted with cipher.
        count:        The per-device packet counter (16 bits, wraps).
        mac:          The device MAC address in wire order, as reported in its discovery reply.
        device_id:    The device id handed out by authentication (0 before authentication).
        cipher:       The cipher for the device's current key.
        device_type:  The device type this host claims to be.
    """
    if len(mac) != 6:
        raise ValueError(f"MAC address must be 6 bytes, got {len(mac)}")
    padded = pad_to(payload)
    packet = bytearray(ENVELOPE_HEADER_LENGTH)
    packet[0:len(ENVELOPE_MAGIC)] = ENVELOPE_MAGIC
    packet[_DEVICE_TYPE_OFFSET:_DEVICE_TYPE_OFFSET + 2] = struct.pack('<H', device_type)
    packet[_COMMAND_OFFSET:_COMMAND_OFFSET + 2] = struct.pack('<H', command)
    packet[_COUNT_OFFSET:_COUNT_OFFSET + 2] = struct.pack('<H', count & 0xffff)
    packet[_MAC_OFFSET:_MAC_OFFSET + 6] = mac
    packet[_DEVICE_ID_OFFSET:_DEVICE_ID_OFFSET + 4] = struct.pack('<I', device_id)
    packet[_PAYLOAD_CHECKSUM_OFFSET:_PAYLOAD_CHECKSUM_OFFSET + 2] = struct.pack('<H', checksum(padded))
    packet += cipher.encrypt(padded)
    _stamp_checksum(packet)
    return bytes(packet)

def build_auth_payload(name: str="broadlink_protocol") -> bytes:
    """The cleartext payload of an authentication request."""
    payload = bytearray(AUTH_PAYLOAD_LENGTH)
    payload[0x04:0x13] = b"\x31" * 15
    payload[0x1e] = 0x01
    payload[0x2d] = 0x01
    encoded_name = name.encode('utf-8')[:AUTH_PAYLOAD_LENGTH - _AUTH_NAME_OFFSET]
    payload[_AUTH_NAME_OFFSET:_AUTH_NAME_OFFSET + len(encoded_name)] = encoded_name
    return bytes(payload)

def parse_auth_payload(payload: bytes) -> Tuple[int, bytes]:
    """Extracts (device_id, session_key) from a decrypted authentication reply payload."""
    if len(payload) < 0x14:
        raise MalformedPacket(f"Authentication reply payload too short: {len(payload)} bytes")
    device_id = int.from_bytes(payload[0x00:0x04], 'little')
    key = bytes(payload[0x04:0x14])
    return (device_id, key)

class ReplyKind(Enum):
    FRAMED = "framed"
    """A framed command packet (4-byte preamble, no envelope)."""

    DISCOVERY_REQUEST = "discovery-request"
    """A discovery request; typically our own broadcast echoed back."""

    DISCOVERY_REPLY = "discovery-reply"
    """A device announcing itself in answer to a discovery request."""

    COMMAND_REPLY = "command-reply"
    """A device answering an envelope command."""

class ParsedReply:
    """The decoded form of a received datagram.

    Which fields are meaningful depends on kind; fields that do not apply are None
    (or 0 for error_code).
    """

    raw_data: bytes
    """The raw UDP datagram contents"""

    kind: ReplyKind

    command_type: int
    """byte 0 for framed packets; the 16-bit code at 0x26 for envelopes"""

    payload: bytes
    """Framed packets: everything after the preamble, padding included.
       Command replies: the still encrypted payload after the 0x38-byte header.
       Discovery packets: b''."""

    error_code: int = 0
    """Command replies only: non-zero if the device rejected the command."""

    device_identity: Optional[int] = None
    """The 16-bit model identity reported by the device."""

    mac: Optional[bytes] = None
    """The device MAC address in wire order."""

    device_id: Optional[int] = None
    count: Optional[int] = None

    host: Optional[str] = None
    """Discovery replies only: the IPv4 address the device reports for itself."""

    name: Optional[str] = None
    """Discovery replies only: the device's configured name."""

    is_locked: bool = False
    """Discovery replies only: True if the device is locked against LAN control."""

    def __init__(self, raw_data: bytes, kind: ReplyKind, command_type: int, payload: bytes=b""):
        self.raw_data = raw_data
        self.kind = kind
        self.command_type = command_type
        self.payload = payload

    @property
    def mac_address(self) -> Optional[str]:
        return None if self.mac is None else format_mac(self.mac)

    def decrypt_payload(self, cipher: PayloadCipher) -> bytes:
        """Decrypts the payload of a command reply."""
        if self.kind != ReplyKind.COMMAND_REPLY:
            raise MalformedPacket(f"Only command replies carry an encrypted payload, not {self.kind.value}")
        return cipher.decrypt(self.payload)

    def __str__(self) -> str:
        parts = [f"kind={self.kind.value}", f"command=0x{self.command_type:02x}"]
        if self.device_identity is not None:
            parts.append(f"identity=0x{self.device_identity:04x}")
        if self.mac is not None:
            parts.append(f"mac={self.mac_address}")
        if self.error_code != 0:
            parts.append(f"error=0x{self.error_code:04x}")
        if len(self.payload) > 0:
            parts.append(f"payload={self.payload.hex()}")
        return f"ParsedReply({', '.join(parts)})"

    def __repr__(self) -> str:
        return str(self)

def _parse_discovery_reply(data: bytes) -> ParsedReply:
    if len(data) < DISCOVERY_REPLY_MIN_LENGTH:
        raise MalformedPacket(f"Truncated discovery reply: {len(data)} bytes")
    reply = ParsedReply(data, ReplyKind.DISCOVERY_REPLY, CMD_DISCOVERY_REPLY)
    reply.device_identity = int.from_bytes(data[_REPLY_IDENTITY_OFFSET:_REPLY_IDENTITY_OFFSET + 2], 'little')
    reply.host = wire_to_ipv4(data[_REPLY_ADDRESS_OFFSET:_REPLY_ADDRESS_OFFSET + 4])
    reply.mac = bytes(data[_REPLY_MAC_OFFSET:_REPLY_MAC_OFFSET + 6])
    name = data[_REPLY_NAME_OFFSET:].split(b"\x00", 1)[0]
    reply.name = name.decode('utf-8', errors='replace')
    if len(data) > _REPLY_LOCK_OFFSET:
        reply.is_locked = bool(data[_REPLY_LOCK_OFFSET])
    return reply

def _parse_command_reply(data: bytes, code: int) -> ParsedReply:
    if len(data) < ENVELOPE_HEADER_LENGTH:
        raise MalformedPacket(f"Truncated command reply: {len(data)} bytes")
    reply = ParsedReply(data, ReplyKind.COMMAND_REPLY, code, bytes(data[ENVELOPE_HEADER_LENGTH:]))
    reply.error_code = int.from_bytes(data[_ERROR_CODE_OFFSET:_ERROR_CODE_OFFSET + 2], 'little')
    reply.device_identity = int.from_bytes(data[_DEVICE_TYPE_OFFSET:_DEVICE_TYPE_OFFSET + 2], 'little')
    reply.count = int.from_bytes(data[_COUNT_OFFSET:_COUNT_OFFSET + 2], 'little')
    reply.mac = bytes(data[_MAC_OFFSET:_MAC_OFFSET + 6])
    reply.device_id = int.from_bytes(data[_DEVICE_ID_OFFSET:_DEVICE_ID_OFFSET + 4], 'little')
    return reply

def _is_discovery_envelope(data: bytes) -> bool:
    if any(data[0:len(ENVELOPE_MAGIC)]):
        return False
    code = int.from_bytes(data[_COMMAND_OFFSET:_COMMAND_OFFSET + 2], 'little')
    return code in (CMD_DISCOVERY, CMD_DISCOVERY_REPLY) and has_valid_checksum(data)

def _is_command_envelope(data: bytes) -> bool:
    return data[0:len(ENVELOPE_MAGIC)] == ENVELOPE_MAGIC and has_valid_checksum(data)

def parse_command_packet(datagram: bytes) -> ParsedReply:
    """Decodes a datagram known to be a framed command packet."""
    data = bytes(datagram)
    if len(data) < MIN_PACKET_LENGTH or len(data) % BLOCK_SIZE != 0:
        raise MalformedPacket(f"Datagram of {len(data)} bytes is not a padded command packet")
    return ParsedReply(data, ReplyKind.FRAMED, data[0], data[COMMAND_PREAMBLE_LENGTH:])

def parse_reply(datagram: bytes) -> ParsedReply:
    """Decodes a received datagram.

    A datagram of at least 48 bytes with a valid checksum at 0x20 is an envelope if it
    starts with the envelope magic (device envelopes), or if its first 8 bytes are zero
    and it carries a discovery code (discovery requests and replies). The reserved
    preamble bytes of a framed command packet are zero, so it can never start with the
    magic, and it only starts with 8 zero bytes when its command type is 0. Anything else
    must be a framed command packet. Raises MalformedPacket for datagrams that are
    truncated or fit neither layout. Well-formed packets with unexpected codes are
    returned as-is for the caller to interpret.
    """
    data = bytes(datagram)
    if len(data) < MIN_PACKET_LENGTH:
        raise MalformedPacket(f"Datagram too short: {len(data)} bytes")
    if len(data) >= DISCOVERY_PACKET_LENGTH:
        if _is_command_envelope(data) or _is_discovery_envelope(data):
            code = int.from_bytes(data[_COMMAND_OFFSET:_COMMAND_OFFSET + 2], 'little')
            if code == CMD_DISCOVERY:
                return ParsedReply(data, ReplyKind.DISCOVERY_REQUEST, code)
            if code == CMD_DISCOVERY_REPLY:
                return _parse_discovery_reply(data)
            return _parse_command_reply(data, code)
    if len(data) % BLOCK_SIZE != 0:
        raise MalformedPacket(f"Datagram of {len(data)} bytes is neither an envelope nor a padded command packet")
    return parse_command_packet(data)
