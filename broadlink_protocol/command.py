#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
CommandClient -- Sends commands to a single device endpoint and waits for the correlated reply.

Every exchange goes over the shared BroadlinkSocket. A temporary listener is registered
before the packet is sent (so a fast reply cannot be missed), the first acceptable reply
from the exact destination endpoint completes the exchange, and the listener is always
unregistered afterwards, whether the exchange succeeded, timed out or failed to send.

Timeouts and send failures are reported as a CommandOutcome rather than raised; callers
that prefer exceptions call CommandOutcome.raise_for_status().
"""

from __future__ import annotations

import asyncio
from asyncio import Future
from enum import Enum
import socket

from .internal_types import *
from .pkg_logging import logger
from .constants import DEFAULT_COMMAND_TIMEOUT
from .exceptions import BroadlinkError, DeviceError, MalformedPacket, NoResponse, SendFailed
from .packet import ParsedReply, ReplyKind, build_command_packet, parse_reply
from .broadlink_socket import BroadlinkSocket

ReplyPredicate = Callable[[ParsedReply], bool]
"""Decides whether a parsed datagram from the destination endpoint answers the exchange."""

class CommandStatus(Enum):
    SUCCESS = "success"
    """A correlated reply was received."""

    SENT = "sent"
    """The packet was sent and no reply was requested."""

    NO_RESPONSE = "no-response"
    """No correlated reply arrived before the timeout."""

    SEND_FAILED = "send-failed"
    """The packet could not be sent."""

    DEVICE_ERROR = "device-error"
    """The device replied with a non-zero error code."""

class CommandOutcome:
    """The result of one command exchange."""

    status: CommandStatus
    endpoint: HostAndPort

    reply: Optional[ParsedReply] = None
    """The correlated reply, for SUCCESS and DEVICE_ERROR."""

    error: Optional[BroadlinkError] = None
    """The corresponding exception, for NO_RESPONSE, SEND_FAILED and DEVICE_ERROR."""

    payload: Optional[bytes] = None
    """The decrypted reply payload, if a device session decrypted it."""

    def __init__(
            self,
            status: CommandStatus,
            endpoint: HostAndPort,
            reply: Optional[ParsedReply]=None,
            error: Optional[BroadlinkError]=None
          ) -> None:
        self.status = status
        self.endpoint = endpoint
        self.reply = reply
        self.error = error

    @property
    def ok(self) -> bool:
        return self.status in (CommandStatus.SUCCESS, CommandStatus.SENT)

    def raise_for_status(self) -> Self:
        """Raises the exception corresponding to a failed outcome. Returns self otherwise."""
        if not self.ok:
            assert self.error is not None
            raise self.error
        return self

    def __str__(self) -> str:
        detail = "" if self.error is None else f", error={self.error}"
        return f"CommandOutcome({self.status.value}, {self.endpoint[0]}:{self.endpoint[1]}{detail})"

    def __repr__(self) -> str:
        return str(self)


class CommandClient:
    """
    Performs request/reply exchanges with devices over a shared BroadlinkSocket.

    Concurrent exchanges are allowed. Each has its own listener and its own future; a
    reply is correlated by its source endpoint and by the exchange's accept predicate.
    """

    broadlink_socket: BroadlinkSocket

    timeout: float = DEFAULT_COMMAND_TIMEOUT
    """The default amount of time (in seconds) to wait for a reply."""

    def __init__(self, broadlink_socket: BroadlinkSocket, timeout: float=DEFAULT_COMMAND_TIMEOUT):
        self.broadlink_socket = broadlink_socket
        self.timeout = timeout

    async def resolve_endpoint(self, endpoint: HostAndPort) -> HostAndPort:
        """Resolves the host of endpoint to the IPv4 address replies will come from."""
        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(endpoint[0], endpoint[1], family=socket.AF_INET, type=socket.SOCK_DGRAM)
        if len(infos) == 0:
            raise OSError(f"No IPv4 address for host {endpoint[0]!r}")
        address = infos[0][4]
        return (address[0], address[1])

    async def send_command(
            self,
            endpoint: HostAndPort,
            command_type: int,
            payload: bytes=b"",
            timeout: Optional[float]=None,
            expect_reply: bool=True,
          ) -> CommandOutcome:
        """Frames a command with build_command_packet() and performs an exchange with endpoint."""
        packet = build_command_packet(command_type, payload)
        return await self.exchange(endpoint, packet, timeout=timeout, expect_reply=expect_reply)

    async def exchange(
            self,
            endpoint: HostAndPort,
            packet: bytes,
            timeout: Optional[float]=None,
            expect_reply: bool=True,
            accept: Optional[ReplyPredicate]=None,
          ) -> CommandOutcome:
        """Sends a packet to endpoint and, if expect_reply is True, waits for the reply.

        Parameters:
            endpoint:      The (host, port) of the device. A host name is resolved to its IPv4
                           address once, and replies must come from that address.
            packet:        The complete datagram to send.
            timeout:       How long (in seconds) to wait for a reply. Defaults to self.timeout.
            expect_reply:  If False, the outcome is SENT as soon as the packet has been sent.
            accept:        If provided, only replies for which accept(reply) returns True complete
                           the exchange. Other datagrams from endpoint are ignored.

        Returns a CommandOutcome. Never raises for a timeout, a send failure or an
        unresolvable host.
        """
        if timeout is None:
            timeout = self.timeout
        try:
            endpoint = await self.resolve_endpoint(endpoint)
        except OSError as e:
            error = SendFailed((endpoint[0], endpoint[1]), e)
            logger.warning(f"{error}")
            return CommandOutcome(CommandStatus.SEND_FAILED, (endpoint[0], endpoint[1]), error=error)

        if not expect_reply:
            try:
                await self.broadlink_socket.send_message(packet, endpoint)
            except SendFailed as e:
                logger.warning(f"{e}")
                return CommandOutcome(CommandStatus.SEND_FAILED, endpoint, error=e)
            return CommandOutcome(CommandStatus.SENT, endpoint)

        loop = asyncio.get_running_loop()
        reply_future: Future[ParsedReply] = loop.create_future()

        def listener(data: bytes, addr: HostAndPort) -> None:
            if reply_future.done() or (addr[0], addr[1]) != endpoint:
                return
            try:
                reply = parse_reply(data)
            except MalformedPacket as e:
                logger.debug(f"Ignoring malformed datagram from {addr}: {e}")
                return
            if reply.kind in (ReplyKind.DISCOVERY_REQUEST, ReplyKind.DISCOVERY_REPLY):
                return
            if accept is not None and not accept(reply):
                logger.debug(f"Ignoring uncorrelated reply from {addr}: {reply}")
                return
            reply_future.set_result(reply)

        self.broadlink_socket.register_listener(listener)
        try:
            try:
                await self.broadlink_socket.send_message(packet, endpoint)
            except SendFailed as e:
                logger.warning(f"{e}")
                return CommandOutcome(CommandStatus.SEND_FAILED, endpoint, error=e)
            try:
                reply = await asyncio.wait_for(reply_future, timeout)
            except asyncio.TimeoutError:
                logger.debug(f"No response from {endpoint[0]}:{endpoint[1]} within {timeout} seconds")
                return CommandOutcome(CommandStatus.NO_RESPONSE, endpoint, error=NoResponse(endpoint, timeout))
        finally:
            self.broadlink_socket.unregister_listener(listener)

        if reply.kind == ReplyKind.COMMAND_REPLY and reply.error_code != 0:
            error = DeviceError(reply.error_code, endpoint)
            logger.debug(f"{error}")
            return CommandOutcome(CommandStatus.DEVICE_ERROR, endpoint, reply=reply, error=error)
        return CommandOutcome(CommandStatus.SUCCESS, endpoint, reply=reply)
