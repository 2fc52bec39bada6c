#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Sessions with individual Broadlink devices.

A session holds the per-device protocol state (the session key, the device id handed
out by authentication, and the packet counter) and turns high level operations such as
"send this IR code" into encrypted envelope exchanges performed by a CommandClient.
"""

from __future__ import annotations

from .internal_types import *
from .pkg_logging import DeviceLogger
from .constants import (
    CMD_AUTHENTICATE,
    CMD_COMMAND,
    DEVICE_PORT,
    PLUG_CHECK_POWER,
    PLUG_SET_POWER,
    REMOTE_SEND_CODE,
    REPLY_CODE_OFFSET,
  )
from .exceptions import AuthenticationFailed, MalformedPacket
from .cipher import PayloadCipher
from .models import DeviceFamily, DeviceModelClass, classify
from .packet import (
    ParsedReply,
    ReplyKind,
    build_auth_payload,
    build_command_packet,
    build_envelope,
    parse_auth_payload,
  )
from .command import CommandClient, CommandOutcome, CommandStatus
from .discovery import DiscoveredDevice
from .util import format_mac

class BroadlinkDevice:
    """A session with one device. Not safe for concurrent use from several tasks."""

    command_client: CommandClient
    host: str
    port: int
    mac: bytes
    """The device MAC address in wire order."""

    identity: int
    name: str
    model: DeviceModelClass

    device_id: int = 0
    """Assigned by the device during authentication."""

    count: int = 0
    """The packet counter; incremented (modulo 2**16) before each envelope is sent."""

    cipher: PayloadCipher
    is_authenticated: bool = False
    logger: DeviceLogger

    def __init__(
            self,
            command_client: CommandClient,
            host: str,
            mac: bytes,
            identity: int,
            port: int=DEVICE_PORT,
            name: str="",
          ) -> None:
        self.command_client = command_client
        self.host = host
        self.port = port
        self.mac = bytes(mac)
        self.identity = identity
        self.name = name
        self.model = classify(identity)
        self.cipher = PayloadCipher()
        self.logger = DeviceLogger(self.mac_address)

    @classmethod
    def from_discovered(cls, command_client: CommandClient, device: DiscoveredDevice) -> Self:
        return cls(command_client, device.host, device.mac, device.identity, port=device.port, name=device.name)

    @property
    def endpoint(self) -> HostAndPort:
        return (self.host, self.port)

    @property
    def mac_address(self) -> str:
        return format_mac(self.mac)

    @property
    def family(self) -> DeviceFamily:
        return self.model.family

    def _next_count(self) -> int:
        self.count = (self.count + 1) & 0xffff
        return self.count

    def _is_reply_to(self, command: int) -> Callable[[ParsedReply], bool]:
        reply_code = command + REPLY_CODE_OFFSET
        def accept(reply: ParsedReply) -> bool:
            return (
                reply.kind == ReplyKind.COMMAND_REPLY and
                reply.command_type == reply_code and
                reply.mac == self.mac
              )
        return accept

    async def send_packet(
            self,
            command: int,
            payload: bytes,
            timeout: Optional[float]=None,
            cipher: Optional[PayloadCipher]=None,
          ) -> CommandOutcome:
        """Sends an envelope to the device and waits for the matching reply.

        On success the decrypted reply payload is stored in CommandOutcome.payload.
        """
        if cipher is None:
            cipher = self.cipher
        packet = build_envelope(
            command,
            payload,
            count=self._next_count(),
            mac=self.mac,
            device_id=self.device_id,
            cipher=cipher,
          )
        outcome = await self.command_client.exchange(
            self.endpoint,
            packet,
            timeout=timeout,
            accept=self._is_reply_to(command)
          )
        self.logger.online = outcome.status in (CommandStatus.SUCCESS, CommandStatus.DEVICE_ERROR)
        if outcome.status == CommandStatus.SUCCESS:
            assert outcome.reply is not None
            outcome.payload = outcome.reply.decrypt_payload(cipher)
            self.logger.debug(f"Command 0x{command:02x} succeeded")
        else:
            self.logger.debug(f"Command 0x{command:02x} failed: {outcome}")
        return outcome

    async def authenticate(self, timeout: Optional[float]=None) -> None:
        """Obtains a device id and a session key from the device.

        Raises AuthenticationFailed if the device does not answer or rejects the request.
        """
        # Authentication always uses the initial key, even when re-authenticating
        cipher = PayloadCipher()
        outcome = await self.send_packet(CMD_AUTHENTICATE, build_auth_payload(), timeout=timeout, cipher=cipher)
        if not outcome.ok:
            self.is_authenticated = False
            raise AuthenticationFailed(f"Authentication with {self.host} failed: {outcome.error}") from outcome.error
        assert outcome.payload is not None
        try:
            device_id, key = parse_auth_payload(outcome.payload)
        except MalformedPacket as e:
            raise AuthenticationFailed(f"Authentication with {self.host} failed: {e}") from e
        self.device_id = device_id
        self.cipher = cipher.with_key(key)
        self.is_authenticated = True
        self.logger.info(f"Authenticated {self.model.label} '{self.name}' at {self.host} (id=0x{device_id:08x})")

    async def ensure_authenticated(self, timeout: Optional[float]=None) -> None:
        if not self.is_authenticated:
            await self.authenticate(timeout=timeout)

    async def send_command(self, command_packet: bytes, timeout: Optional[float]=None) -> CommandOutcome:
        """Sends a framed command packet, prefixed with the model's command header, in a command envelope."""
        return await self.send_packet(CMD_COMMAND, self.model.command_header + command_packet, timeout=timeout)

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({self.model.value}, {self.host}:{self.port}, mac={self.mac_address}, name='{self.name}')"

    def __repr__(self) -> str:
        return str(self)


class RemoteDevice(BroadlinkDevice):
    """An IR/RF remote blaster."""

    async def send_code(self, code: bytes, timeout: Optional[float]=None) -> CommandOutcome:
        """Transmits a learned IR/RF code."""
        if len(code) == 0:
            raise ValueError("Remote code must not be empty")
        outcome = await self.send_command(build_command_packet(REMOTE_SEND_CODE, code), timeout=timeout)
        if outcome.ok:
            self.logger.info(f"Sent remote code ({len(code)} bytes)")
        else:
            self.logger.warning(f"Failed to send remote code: {outcome.error}")
        return outcome


class SmartPlug(BroadlinkDevice):
    """A switchable plug."""

    async def set_power(self, on: bool, night_mode: bool=False, timeout: Optional[float]=None) -> CommandOutcome:
        state = (1 if on else 0) | (2 if night_mode else 0)
        outcome = await self.send_command(build_command_packet(PLUG_SET_POWER, bytes([state])), timeout=timeout)
        if outcome.ok:
            self.logger.info(f"Power {'on' if on else 'off'}")
        return outcome

    async def check_power(self, timeout: Optional[float]=None) -> bool:
        """Returns True if the plug is switched on. Raises if the device does not answer."""
        outcome = (await self.send_command(build_command_packet(PLUG_CHECK_POWER, b""), timeout=timeout)).raise_for_status()
        payload = outcome.payload
        if payload is None or len(payload) < 5:
            raise MalformedPacket(f"Power state reply too short from {self.host}")
        return bool(payload[4] & 0x01)


_SESSION_CLASSES: Mapping[DeviceFamily, Type[BroadlinkDevice]] = {
    DeviceFamily.REMOTE_BLASTER: RemoteDevice,
    DeviceFamily.SMART_PLUG: SmartPlug,
}

def create_device(command_client: CommandClient, device: DiscoveredDevice) -> BroadlinkDevice:
    """Creates the session class matching a discovered device's family.

    Raises UnsupportedDevice if the identity is unknown. Families without a specialized
    session class get a plain BroadlinkDevice.
    """
    model = device.model
    cls = _SESSION_CLASSES.get(model.family, BroadlinkDevice)
    return cls.from_discovered(command_client, device)
