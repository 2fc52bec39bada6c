#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Helpers shared by the tests: packet builders and an in-process fake device."""

from __future__ import annotations

import asyncio
import struct

from broadlink_protocol.internal_types import *
from broadlink_protocol.constants import CMD_AUTHENTICATE, CMD_COMMAND, CMD_DISCOVERY_REPLY, REPLY_CODE_OFFSET
from broadlink_protocol.cipher import PayloadCipher
from broadlink_protocol.packet import ParsedReply, ReplyKind, build_envelope, checksum, parse_reply
from broadlink_protocol.util import ipv4_to_wire

LOCALHOST = "127.0.0.1"

RM3_IDENTITY = 0x27c2
RM4_IDENTITY = 0x51da
SP2_IDENTITY = 0x7539
UNKNOWN_IDENTITY = 0x6666

DEVICE_MAC = bytes([0x66, 0x55, 0x44, 0x33, 0x22, 0x11])
DEVICE_ID = 0x0a0b0c0d
SESSION_KEY = bytes(range(0x10, 0x20))

def restamp_checksum(packet: bytearray) -> bytes:
    packet[0x20:0x22] = b"\x00\x00"
    packet[0x20:0x22] = struct.pack('<H', checksum(packet))
    return bytes(packet)

def make_discovery_reply(
        identity: int=RM3_IDENTITY,
        mac: bytes=DEVICE_MAC,
        host: str=LOCALHOST,
        name: str="Living Room",
        locked: bool=False,
        length: int=0x80,
      ) -> bytes:
    packet = bytearray(length)
    packet[0x26] = CMD_DISCOVERY_REPLY
    packet[0x34:0x36] = struct.pack('<H', identity)
    packet[0x36:0x3a] = ipv4_to_wire(host)
    packet[0x3a:0x40] = mac
    encoded_name = name.encode('utf-8')
    packet[0x40:0x40 + len(encoded_name)] = encoded_name
    if length > 0x7f:
        packet[0x7f] = 1 if locked else 0
    return restamp_checksum(packet)

def make_command_reply(
        command: int,
        payload: bytes=b"",
        *,
        identity: int=RM3_IDENTITY,
        mac: bytes=DEVICE_MAC,
        device_id: int=DEVICE_ID,
        count: int=1,
        cipher: Optional[PayloadCipher]=None,
        error_code: int=0,
      ) -> bytes:
    """Builds the envelope a device sends in answer to command."""
    packet = bytearray(build_envelope(
        command + REPLY_CODE_OFFSET,
        payload,
        count=count,
        mac=mac,
        device_id=device_id,
        cipher=PayloadCipher() if cipher is None else cipher,
        device_type=identity,
      ))
    packet[0x22:0x24] = struct.pack('<H', error_code)
    return restamp_checksum(packet)

DatagramHandler = Callable[[bytes, HostAndPort], Iterable[bytes]]

class FakeDevice(asyncio.DatagramProtocol):
    """A UDP endpoint on 127.0.0.1 that answers each datagram with whatever its handler returns."""

    handler: Optional[DatagramHandler]
    received: List[Tuple[bytes, HostAndPort]]
    transport: Optional[asyncio.DatagramTransport] = None

    def __init__(self, handler: Optional[DatagramHandler]=None):
        self.handler = handler
        self.received = []

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        self.received.append((data, addr))
        if self.handler is not None:
            for reply in self.handler(data, addr):
                self.send(reply, addr)

    def send(self, data: bytes, addr: HostAndPort) -> None:
        assert self.transport is not None
        self.transport.sendto(data, addr)

    @property
    def endpoint(self) -> HostAndPort:
        assert self.transport is not None
        return self.transport.get_extra_info('sockname')[:2]

    def close(self) -> None:
        if self.transport is not None:
            self.transport.close()

class FakeRemote:
    """Answers discovery, authentication and command envelopes the way a remote blaster does."""

    identity: int
    name: str
    error_code: int = 0
    answer_commands: bool = True
    commands: List[bytes]
    counts: List[int]
    reply_payload: bytes = b""

    def __init__(self, identity: int=RM3_IDENTITY, name: str="Living Room"):
        self.identity = identity
        self.name = name
        self.commands = []
        self.counts = []
        self.session_cipher = PayloadCipher().with_key(SESSION_KEY)

    def __call__(self, data: bytes, addr: HostAndPort) -> Iterable[bytes]:
        request = parse_reply(data)
        if request.kind == ReplyKind.DISCOVERY_REQUEST:
            return [make_discovery_reply(self.identity, name=self.name)]
        assert request.kind == ReplyKind.COMMAND_REPLY
        assert request.count is not None
        self.counts.append(request.count)
        if request.command_type == CMD_AUTHENTICATE:
            request.decrypt_payload(PayloadCipher())
            auth_reply = DEVICE_ID.to_bytes(4, 'little') + SESSION_KEY
            return [make_command_reply(CMD_AUTHENTICATE, auth_reply, identity=self.identity, count=request.count)]
        if request.command_type == CMD_COMMAND:
            self.commands.append(request.decrypt_payload(self.session_cipher))
            if not self.answer_commands:
                return []
            return [make_command_reply(
                CMD_COMMAND,
                self.reply_payload,
                identity=self.identity,
                count=request.count,
                cipher=self.session_cipher,
                error_code=self.error_code,
              )]
        return []

async def wait_until(predicate: Callable[[], bool], timeout: float=2.0) -> None:
    """Polls predicate until it returns True. Raises asyncio.TimeoutError after timeout seconds."""
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout)
