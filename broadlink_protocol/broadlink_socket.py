#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
BroadlinkSocket -- The UDP endpoint shared by every discovery run and command exchange. It can:

  1. Broadcast or unicast a datagram to a device
  2. Receive datagrams from any device and deliver each one to every registered listener

  One instance is created per process and handed to the DiscoveryOrchestrator and the
  CommandClient. The underlying socket is opened on first use and stays open until
  close() is called.

  A listener is any callable taking (data: bytes, addr: HostAndPort). Listeners are called
  synchronously from the receive path, in registration order, so they must return promptly;
  BroadlinkDatagramSubscriber is a listener that hands datagrams off to an asyncio.Queue
  for consumers that want to await them.
"""

from __future__ import annotations

import asyncio
from asyncio import Future
import socket
import threading

from .internal_types import *
from .pkg_logging import logger
from .constants import LOCAL_PORT_LOW, LOCAL_PORT_HIGH, MIN_PACKET_LENGTH
from .exceptions import BroadlinkError, SendFailed
from .util import find_free_port

MAX_QUEUE_SIZE = 1000

SocketListener = Callable[[bytes, HostAndPort], None]
"""A callback invoked once for each received datagram."""

class _BroadlinkSocketProtocol(asyncio.DatagramProtocol):
    """An adapter between the asyncio transport and BroadlinkSocket."""

    broadlink_socket: BroadlinkSocket

    def __init__(self, broadlink_socket: BroadlinkSocket):
        self.broadlink_socket = broadlink_socket

    def connection_made(self, transport: asyncio.BaseTransport):
        """Called when a connection is made."""
        logger.debug(f"Connection made: {self.broadlink_socket}")

    def datagram_received(self, data: bytes, addr: Tuple[str, int]):
        """Called when some datagram is received."""
        self.broadlink_socket.datagram_received(addr, data)

    def error_received(self, exc: Exception):
        """Called when a send or receive operation raises an OSError.

        (Other than BlockingIOError or InterruptedError.)
        """
        self.broadlink_socket.error_received(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        """Called when the connection is lost or closed."""
        self.broadlink_socket.connection_lost(exc)


class BroadlinkSocket(AsyncContextManager['BroadlinkSocket']):
    """
    A lazily opened UDP socket shared by all discovery runs and command exchanges.

    Received datagrams are fanned out to every registered listener. The listener set is
    copy-on-write: each datagram is delivered to the snapshot of listeners that was current
    when it arrived, so listeners may be registered or unregistered at any time, from any
    thread, including from inside a listener.
    """

    bind_address: str = ""
    """The local IPv4 address to bind to. "" binds to all interfaces, which is required to
       receive replies to broadcasts on most platforms."""

    bind_port: Optional[int] = None
    """The local UDP port to bind to. If None, the first free port in [port_low, port_high) is used."""

    port_low: int = LOCAL_PORT_LOW
    port_high: int = LOCAL_PORT_HIGH

    final_result: Optional[Future[None]] = None
    """A future that is set when the socket is closed. None until the socket is opened."""

    _listeners: Tuple[SocketListener, ...] = ()
    _listeners_lock: threading.Lock
    _start_lock: Optional[asyncio.Lock] = None
    _sock: Optional[socket.socket] = None
    _transport: Optional[asyncio.DatagramTransport] = None
    _local_addr: Optional[HostAndPort] = None
    _closed: bool = False

    def __init__(
            self,
            bind_address: str="",
            bind_port: Optional[int]=None,
            port_low: int=LOCAL_PORT_LOW,
            port_high: int=LOCAL_PORT_HIGH,
          ) -> None:
        self.bind_address = bind_address
        self.bind_port = bind_port
        self.port_low = port_low
        self.port_high = port_high
        self._listeners = ()
        self._listeners_lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._transport is not None and not self._closed

    @property
    def local_addr(self) -> HostAndPort:
        """The (address, port) the socket is bound to. Only valid once the socket is open."""
        if self._local_addr is None:
            raise BroadlinkError("BroadlinkSocket has not been started")
        return self._local_addr

    @property
    def local_port(self) -> int:
        return self.local_addr[1]

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def register_listener(self, listener: SocketListener) -> None:
        """Adds a listener. Registering a listener that is already registered has no effect."""
        with self._listeners_lock:
            if listener not in self._listeners:
                self._listeners = self._listeners + (listener,)

    def unregister_listener(self, listener: SocketListener) -> None:
        """Removes a listener. Removing a listener that is not registered has no effect."""
        with self._listeners_lock:
            self._listeners = tuple(x for x in self._listeners if x != listener)

    def _create_socket(self) -> socket.socket:
        port = self.bind_port
        if port is None:
            port = find_free_port(self.bind_address, self.port_low, self.port_high)
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind((self.bind_address, port))
        except BaseException:
            sock.close()
            raise
        return sock

    async def start(self) -> None:
        """Opens the socket if it is not already open. Safe to call repeatedly and concurrently."""
        # Lazily created inside the running loop
        if self._start_lock is None:
            self._start_lock = asyncio.Lock()
        async with self._start_lock:
            if self._closed:
                raise BroadlinkError("BroadlinkSocket has been closed")
            if self._transport is not None:
                return
            loop = asyncio.get_running_loop()
            sock = self._create_socket()
            try:
                untyped_transport, protocol = await loop.create_datagram_endpoint(
                    lambda: _BroadlinkSocketProtocol(self),
                    sock=sock
                  )
            except BaseException:
                sock.close()
                raise
            # Note: asyncio datagram transports do not inherit from asyncio.DatagramTransport,
            # although they implement the same interface.
            transport: asyncio.DatagramTransport = untyped_transport # type: ignore[assignment]
            self._sock = sock
            self._transport = transport
            self._local_addr = sock.getsockname()
            self.final_result = loop.create_future()
            logger.debug(f"Opened {self}")

    async def send_message(self, packet: bytes, destination: HostAndPort) -> None:
        """Sends one datagram. Does not wait for any response.

        Raises SendFailed if the datagram cannot be handed to the network.

        The datagram is written directly to the socket rather than through the asyncio
        transport, so OSErrors reach the caller instead of error_received(). The cost is
        that nothing is queued: if the socket send buffer is full, the resulting
        BlockingIOError is raised as SendFailed rather than retried later.
        """
        try:
            await self.start()
        except (OSError, BroadlinkError) as e:
            raise SendFailed(destination, e) from e
        sock = self._sock
        if sock is None or self._closed:
            raise SendFailed(destination, BroadlinkError("BroadlinkSocket is closed"))
        logger.debug(f"Sending {len(packet)} bytes via {self} to {destination}: {packet.hex()}")
        # Sent on the raw socket so that OSErrors reach the caller instead of error_received().
        try:
            sock.sendto(packet, destination)
        except OSError as e:
            raise SendFailed(destination, e) from e

    def datagram_received(self, addr: HostAndPort, data: bytes) -> None:
        """Called for each received datagram. Fans the datagram out to the current listeners."""
        if len(data) < MIN_PACKET_LENGTH:
            logger.debug(f"Dropping truncated datagram from {addr}: {data!r}")
            return
        logger.debug(f"Received {len(data)} bytes from {addr}: {data.hex()}")
        listeners = self._listeners
        for listener in listeners:
            try:
                listener(data, addr)
            except Exception as e:
                logger.warning(f"Listener {listener!r} raised exception processing datagram from {addr}: {e}")

    def error_received(self, exc: Exception) -> None:
        """Called when a send or receive operation raises an OSError.

        (Other than BlockingIOError or InterruptedError.) On UDP these are typically ICMP
        errors for an earlier datagram; the socket remains usable.
        """
        logger.info(f"Error received on {self}: {exc}")

    def connection_lost(self, exc: Optional[Exception]) -> None:
        """Called when the transport is closed."""
        logger.debug(f"Transport closed on {self}, exc={exc}")
        self._transport = None
        self._sock = None
        if self.final_result is not None and not self.final_result.done():
            if exc is None:
                self.final_result.set_result(None)
            else:
                self.final_result.set_exception(exc)

    async def close(self) -> None:
        """Closes the socket. It will not be reopened."""
        self._closed = True
        transport = self._transport
        if transport is not None:
            try:
                transport.close()
            except Exception as e:
                logger.error(f"Error closing transport on {self}: {e}")
        if self.final_result is not None:
            try:
                await self.final_result
            except Exception as e:
                logger.debug(f"BroadlinkSocket closed with exception: {e}")

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        await self.close()
        return False

    def __str__(self) -> str:
        where = f"{self._local_addr[0] or '*'}:{self._local_addr[1]}" if self._local_addr is not None else "unbound"
        return f"BroadlinkSocket({where})"

    def __repr__(self) -> str:
        return str(self)


class BroadlinkDatagramSubscriber(
        AsyncContextManager['BroadlinkDatagramSubscriber'],
        AsyncIterable[Tuple[HostAndPort, bytes]]
      ):
    """A listener that queues received datagrams for an async consumer.

    Usage:
        async with BroadlinkDatagramSubscriber(broadlink_socket) as subscriber:
            ... send something ...
            result = await subscriber.receive()
    """

    broadlink_socket: BroadlinkSocket
    queue: asyncio.Queue[Tuple[HostAndPort, bytes]]

    def __init__(self, broadlink_socket: BroadlinkSocket, max_queue_size: int=MAX_QUEUE_SIZE):
        self.broadlink_socket = broadlink_socket
        self.queue = asyncio.Queue(max_queue_size)

    def __call__(self, data: bytes, addr: HostAndPort) -> None:
        try:
            self.queue.put_nowait((addr, data))
        except asyncio.QueueFull:
            logger.warning(f"Queue full, dropping datagram from {addr}: {data.hex()}")

    async def __aenter__(self) -> BroadlinkDatagramSubscriber:
        self.broadlink_socket.register_listener(self)
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        self.broadlink_socket.unregister_listener(self)
        return False

    async def receive(self) -> Tuple[HostAndPort, bytes]:
        result = await self.queue.get()
        self.queue.task_done()
        return result

    async def iter_datagrams(self) -> AsyncIterator[Tuple[HostAndPort, bytes]]:
        while True:
            yield await self.receive()

    def __aiter__(self) -> AsyncIterator[Tuple[HostAndPort, bytes]]:
        return self.iter_datagrams()
