#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
DiscoveryOrchestrator -- Finds Broadlink devices on the local network. It can:

  1. Broadcast a discovery request (typically to 255.255.255.255:80)
  2. Deliver the replies that arrive within a fixed time window to a caller-supplied listener
  3. Report the end of the window through a completion callback and a future

  A discovery run always waits out its full timeout; replies never extend it. Several runs
  may be in progress at the same time, each with its own listener.
"""

from __future__ import annotations

import asyncio
from asyncio import Future
import time
import datetime
from enum import Enum

from .internal_types import *
from .pkg_logging import logger
from .constants import BROADCAST_ADDRESS, DISCOVERY_PORT, DEFAULT_DISCOVERY_TIMEOUT
from .exceptions import BroadlinkError, DiscoveryFailed, MalformedPacket, UnsupportedDevice
from .models import DeviceModelClass, classify, is_supported
from .packet import ParsedReply, ReplyKind, build_discovery_packet, parse_reply
from .broadlink_socket import BroadlinkSocket, BroadlinkDatagramSubscriber, SocketListener
from .util import format_mac, resolve_local_address

class DiscoveryState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    FINISHED = "finished"

class DiscoveredDevice:
    host: str
    """The address the discovery reply came from"""

    port: int
    """The port the discovery reply came from; commands are sent here"""

    mac: bytes
    """The device MAC address in wire order"""

    identity: int
    """The 16-bit model identity the device reported"""

    name: str
    """The device's configured name (may be empty)"""

    is_locked: bool
    """True if the device is locked against LAN control"""

    reply: ParsedReply
    """The decoded discovery reply"""

    monotonic_time: float
    """The local time (in seconds) since an arbitrary point in the past at which
       the reply was received, as returned by time.monotonic()."""

    utc_time: datetime.datetime
    """The UTC time at which the reply was received."""

    def __init__(self, addr: HostAndPort, reply: ParsedReply) -> None:
        assert reply.kind == ReplyKind.DISCOVERY_REPLY
        assert reply.mac is not None and reply.device_identity is not None
        self.host, self.port = addr[0], addr[1]
        self.mac = reply.mac
        self.identity = reply.device_identity
        self.name = reply.name or ""
        self.is_locked = reply.is_locked
        self.reply = reply
        self.monotonic_time = time.monotonic()
        self.utc_time = datetime.datetime.now(datetime.timezone.utc)

    @property
    def endpoint(self) -> HostAndPort:
        return (self.host, self.port)

    @property
    def mac_address(self) -> str:
        return format_mac(self.mac)

    @property
    def model(self) -> DeviceModelClass:
        """The model of the device. Raises UnsupportedDevice if the identity is unknown."""
        return classify(self.identity)

    @property
    def is_supported(self) -> bool:
        return is_supported(self.identity)

    def __str__(self) -> str:
        model = self.model.value if self.is_supported else "unsupported"
        return f"DiscoveredDevice({self.host}:{self.port}, mac={self.mac_address}, identity=0x{self.identity:04x} [{model}], name='{self.name}')"

    def __repr__(self) -> str:
        return str(self)

DeviceFoundHandler = Callable[[DiscoveredDevice], None]
"""A callback for each device found during a scan. Called from the socket's receive path; must not block."""

DiscoveryFinishedHandler = Callable[['DiscoveryRun'], None]
"""A callback invoked exactly once when a discovery run finishes, successfully or not."""

class DiscoveryRun:
    """A single discovery run: one broadcast followed by a fixed wait.

    Created and started by DiscoveryOrchestrator.begin(). Starting the run registers the
    listener; the run's task then broadcasts the discovery request, sleeps for the timeout,
    unregisters the listener, completes final_result and calls on_finished.
    """

    orchestrator: DiscoveryOrchestrator
    listener: SocketListener
    timeout: float
    on_finished: Optional[DiscoveryFinishedHandler]

    state: DiscoveryState = DiscoveryState.IDLE

    error: Optional[DiscoveryFailed] = None
    """Set if the run could not send its broadcast."""

    final_result: Future[None]
    """Completed when the run finishes; holds DiscoveryFailed if the broadcast could not be sent."""

    task: Optional[asyncio.Task[None]] = None

    def __init__(
            self,
            orchestrator: DiscoveryOrchestrator,
            listener: SocketListener,
            timeout: float,
            on_finished: Optional[DiscoveryFinishedHandler]=None
          ) -> None:
        if timeout < 0:
            raise ValueError(f"Discovery timeout must not be negative: {timeout}")
        self.orchestrator = orchestrator
        self.listener = listener
        self.timeout = timeout
        self.on_finished = on_finished
        self.final_result = asyncio.get_running_loop().create_future()

    def start(self) -> None:
        assert self.task is None
        self.state = DiscoveryState.SCANNING
        self.orchestrator.broadlink_socket.register_listener(self.listener)
        self.task = asyncio.create_task(self._run())

    async def _broadcast(self) -> None:
        orchestrator = self.orchestrator
        try:
            local_address = orchestrator.local_address
            if local_address is None:
                local_address = resolve_local_address()
            broadlink_socket = orchestrator.broadlink_socket
            await broadlink_socket.start()
            packet = build_discovery_packet(local_address, broadlink_socket.local_port)
            await broadlink_socket.send_message(packet, (orchestrator.broadcast_address, orchestrator.discovery_port))
        except (BroadlinkError, OSError) as e:
            raise DiscoveryFailed(f"Failed to initiate discovery: {e}") from e

    async def _run(self) -> None:
        broadlink_socket = self.orchestrator.broadlink_socket
        try:
            await self._broadcast()
            logger.debug(f"Device scan waiting for {self.timeout} seconds to complete")
            await asyncio.sleep(self.timeout)
        except DiscoveryFailed as e:
            logger.error(f"{e}")
            self.error = e
        finally:
            broadlink_socket.unregister_listener(self.listener)
            self.state = DiscoveryState.FINISHED
            self._finish()

    def _finish(self) -> None:
        if not self.final_result.done():
            if self.error is None:
                self.final_result.set_result(None)
            else:
                self.final_result.set_exception(self.error)
                # Marks the exception as retrieved; run.error reports it too
                self.final_result.exception()
        logger.debug(f"Ended device scan (error={self.error})")
        if self.on_finished is not None:
            try:
                self.on_finished(self)
            except Exception as e:
                logger.warning(f"Discovery finished handler raised exception: {e}")

    def done(self) -> bool:
        return self.state == DiscoveryState.FINISHED

    async def wait(self) -> None:
        """Waits for the run to finish. Raises DiscoveryFailed if the broadcast could not be sent."""
        await asyncio.shield(self.final_result)


class DiscoveryOrchestrator:
    """
    Starts discovery runs on a shared BroadlinkSocket.
    """

    broadlink_socket: BroadlinkSocket

    broadcast_address: str = BROADCAST_ADDRESS
    """The address to send discovery requests to. A unicast address probes a single device."""

    discovery_port: int = DISCOVERY_PORT
    """The port to send discovery requests to."""

    local_address: Optional[str] = None
    """The LAN address to advertise in discovery requests. If None, it is resolved for each run."""

    default_timeout: float = DEFAULT_DISCOVERY_TIMEOUT

    def __init__(
            self,
            broadlink_socket: BroadlinkSocket,
            broadcast_address: str=BROADCAST_ADDRESS,
            discovery_port: int=DISCOVERY_PORT,
            local_address: Optional[str]=None,
            default_timeout: float=DEFAULT_DISCOVERY_TIMEOUT,
          ) -> None:
        self.broadlink_socket = broadlink_socket
        self.broadcast_address = broadcast_address
        self.discovery_port = discovery_port
        self.local_address = local_address
        self.default_timeout = default_timeout

    def begin(
            self,
            listener: SocketListener,
            timeout: Optional[float]=None,
            on_finished: Optional[DiscoveryFinishedHandler]=None,
          ) -> DiscoveryRun:
        """Starts a discovery run in a new task and returns immediately.

        Parameters:
            listener:     Receives every datagram arriving on the socket while the run is scanning.
            timeout:      How long (in seconds) to wait for replies. Defaults to default_timeout.
            on_finished:  Called exactly once when the run finishes.

        Must be called from within a running event loop.
        """
        if timeout is None:
            timeout = self.default_timeout
        logger.info(f"Beginning device scan to {self.broadcast_address}:{self.discovery_port}; will wait {timeout} seconds for responses")
        run = DiscoveryRun(self, listener, timeout, on_finished)
        run.start()
        return run

    def scan_for_devices(
            self,
            timeout: Optional[float]=None,
            on_device_found: Optional[DeviceFoundHandler]=None,
            on_scan_complete: Optional[DiscoveryFinishedHandler]=None,
          ) -> DiscoveryRun:
        """Starts a discovery run that decodes replies and reports each device once.

        Datagrams that are not discovery replies, or that are malformed, are ignored. A device
        is reported once per run even if it answers several times. Devices with an identity
        that is not in the model registry are still reported; DiscoveredDevice.model raises
        UnsupportedDevice for them.
        """
        seen: Set[Tuple[str, bytes]] = set()

        def listener(data: bytes, addr: HostAndPort) -> None:
            try:
                reply = parse_reply(data)
            except MalformedPacket as e:
                logger.debug(f"Ignoring malformed datagram from {addr} during scan: {e}")
                return
            if reply.kind != ReplyKind.DISCOVERY_REPLY:
                return
            device = DiscoveredDevice(addr, reply)
            key = (device.host, device.mac)
            if key in seen:
                return
            seen.add(key)
            if device.is_supported:
                logger.info(f"Found {device.model.label} at {device.host} ({device.mac_address})")
            else:
                logger.warning(f"{UnsupportedDevice(device.identity)} (at {device.host}, {device.mac_address})")
            if on_device_found is not None:
                on_device_found(device)

        return self.begin(listener, timeout, on_scan_complete)

    async def discover(self, timeout: Optional[float]=None) -> List[DiscoveredDevice]:
        """Runs a scan to completion and returns the devices found, in the order they answered.

        Raises DiscoveryFailed if the discovery request could not be sent.
        """
        results: List[DiscoveredDevice] = []
        run = self.scan_for_devices(timeout, results.append)
        await run.wait()
        return results

    def search(self, timeout: Optional[float]=None) -> DiscoverySearch:
        """Create an async context manager/iterable that broadcasts a discovery request and yields
           devices as they answer, until the timeout expires.

        Usage:
            async with orchestrator.search() as search:
                async for device in search:
                    print(device)
                    # It is possible to break out of the loop early
        """
        return DiscoverySearch(self, self.default_timeout if timeout is None else timeout)


class DiscoverySearch(
        AsyncContextManager['DiscoverySearch'],
        AsyncIterable[DiscoveredDevice]
      ):
    """Manages a single discovery run and its replies within an AsyncContextManager/AsyncIterable interface."""

    orchestrator: DiscoveryOrchestrator
    timeout: float
    subscriber: BroadlinkDatagramSubscriber
    run: Optional[DiscoveryRun] = None

    def __init__(self, orchestrator: DiscoveryOrchestrator, timeout: float):
        self.orchestrator = orchestrator
        self.timeout = timeout
        self.subscriber = BroadlinkDatagramSubscriber(orchestrator.broadlink_socket)

    async def __aenter__(self) -> DiscoverySearch:
        self.run = self.orchestrator.begin(self.subscriber, self.timeout)
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        # The run unregisters the subscriber itself once its timeout has elapsed. Leaving
        # the block early still waits for the run to finish.
        if self.run is not None and exc is None:
            await self.run.wait()
        return False

    async def _next_datagram(self) -> Optional[Tuple[HostAndPort, bytes]]:
        """Returns the next queued datagram, or None once the run has finished and the queue is drained."""
        run = self.run
        assert run is not None
        queue = self.subscriber.queue
        while queue.empty():
            if run.done():
                return None
            getter = asyncio.ensure_future(queue.get())
            try:
                await asyncio.wait([getter, run.final_result], return_when=asyncio.FIRST_COMPLETED)
            finally:
                if not getter.done():
                    getter.cancel()
            if getter.done() and not getter.cancelled():
                return getter.result()
        return queue.get_nowait()

    async def iter_devices(self) -> AsyncIterator[DiscoveredDevice]:
        run = self.run
        assert run is not None
        seen: Set[Tuple[str, bytes]] = set()
        while True:
            result = await self._next_datagram()
            if result is None:
                break
            addr, data = result
            try:
                reply = parse_reply(data)
            except MalformedPacket as e:
                logger.debug(f"Ignoring malformed datagram from {addr} during search: {e}")
                continue
            if reply.kind != ReplyKind.DISCOVERY_REPLY:
                continue
            device = DiscoveredDevice(addr, reply)
            key = (device.host, device.mac)
            if key not in seen:
                seen.add(key)
                yield device
        if run.error is not None:
            raise run.error

    def __aiter__(self) -> AsyncIterator[DiscoveredDevice]:
        return self.iter_devices()
