#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Test discovery runs against fake devices on the loopback interface."""

import asyncio
import time

import pytest

from broadlink_protocol import (
    DeviceModelClass,
    DiscoveryFailed,
    DiscoveryOrchestrator,
    DiscoveryState,
    NetworkUnavailable,
    UnsupportedDevice,
)
from broadlink_protocol import discovery
from broadlink_protocol.packet import ReplyKind, parse_reply

from tests.common import (
    DEVICE_MAC,
    LOCALHOST,
    RM3_IDENTITY,
    UNKNOWN_IDENTITY,
    FakeRemote,
    make_discovery_reply,
)


def make_orchestrator(broadlink_socket, device, local_address=LOCALHOST):
    return DiscoveryOrchestrator(
        broadlink_socket,
        broadcast_address=LOCALHOST,
        discovery_port=device.endpoint[1],
        local_address=local_address,
    )


async def test_scan_with_no_replies_waits_for_timeout(broadlink_socket, fake_device_factory):
    silent = await fake_device_factory()
    orchestrator = make_orchestrator(broadlink_socket, silent)
    finished = []
    found = []

    start = time.monotonic()
    run = orchestrator.scan_for_devices(0.3, found.append, finished.append)
    assert broadlink_socket.listener_count == 1
    await run.wait()
    elapsed = time.monotonic() - start

    assert elapsed >= 0.25
    assert found == []
    assert finished == [run]
    assert run.state == DiscoveryState.FINISHED
    assert run.error is None
    assert broadlink_socket.listener_count == 0

    # The discovery request reached the device, advertising the socket's real port
    await asyncio.sleep(0)
    assert len(silent.received) == 1
    request, src = silent.received[0]
    assert parse_reply(request).kind == ReplyKind.DISCOVERY_REQUEST
    assert int.from_bytes(request[0x1c:0x1e], 'little') == broadlink_socket.local_port
    assert src == broadlink_socket.local_addr


async def test_discover_reports_device(broadlink_socket, fake_device_factory):
    device = await fake_device_factory(FakeRemote(RM3_IDENTITY, name="Den"))
    orchestrator = make_orchestrator(broadlink_socket, device)

    devices = await orchestrator.discover(0.3)

    assert len(devices) == 1
    found = devices[0]
    assert found.endpoint == device.endpoint
    assert found.mac == DEVICE_MAC
    assert found.identity == RM3_IDENTITY
    assert found.model == DeviceModelClass.RM3
    assert found.name == "Den"
    assert not found.is_locked


async def test_duplicate_replies_are_reported_once(broadlink_socket, fake_device_factory):
    reply = make_discovery_reply(RM3_IDENTITY)
    device = await fake_device_factory(lambda data, addr: [reply, reply, b"\x01\x02\x03\x04\x05"])
    orchestrator = make_orchestrator(broadlink_socket, device)

    devices = await orchestrator.discover(0.3)

    assert len(devices) == 1


async def test_unsupported_device_is_still_reported(broadlink_socket, fake_device_factory):
    device = await fake_device_factory(lambda data, addr: [make_discovery_reply(UNKNOWN_IDENTITY)])
    orchestrator = make_orchestrator(broadlink_socket, device)

    devices = await orchestrator.discover(0.3)

    assert len(devices) == 1
    assert not devices[0].is_supported
    with pytest.raises(UnsupportedDevice):
        devices[0].model


async def test_concurrent_runs_each_see_replies(broadlink_socket, fake_device_factory):
    device = await fake_device_factory(FakeRemote())
    orchestrator = make_orchestrator(broadlink_socket, device)

    first, second = await asyncio.gather(orchestrator.discover(0.3), orchestrator.discover(0.3))

    assert len(first) == 1
    assert len(second) == 1
    assert broadlink_socket.listener_count == 0


async def test_network_unavailable_fails_immediately(broadlink_socket, fake_device_factory, monkeypatch):
    def no_network():
        raise NetworkUnavailable("No non-loopback IPv4 address is configured on this host")

    monkeypatch.setattr(discovery, "resolve_local_address", no_network)
    device = await fake_device_factory()
    orchestrator = make_orchestrator(broadlink_socket, device, local_address=None)
    finished = []

    run = orchestrator.begin(lambda data, addr: None, 10.0, finished.append)
    with pytest.raises(DiscoveryFailed):
        await asyncio.wait_for(run.wait(), 2.0)

    assert isinstance(run.error, DiscoveryFailed)
    assert finished == [run]
    assert run.done()
    assert broadlink_socket.listener_count == 0
    assert device.received == []


async def test_send_failure_fails_the_run(broadlink_socket):
    orchestrator = DiscoveryOrchestrator(
        broadlink_socket,
        broadcast_address="256.256.256.256",
        local_address=LOCALHOST,
    )

    with pytest.raises(DiscoveryFailed):
        await asyncio.wait_for(orchestrator.discover(10.0), 2.0)
    assert broadlink_socket.listener_count == 0


async def test_search_yields_devices(broadlink_socket, fake_device_factory):
    device = await fake_device_factory(FakeRemote(name="Kitchen"))
    orchestrator = make_orchestrator(broadlink_socket, device)

    names = []
    async with orchestrator.search(0.3) as search:
        async for found in search:
            names.append(found.name)

    assert names == ["Kitchen"]
    assert broadlink_socket.listener_count == 0


async def test_negative_timeout_is_rejected(broadlink_socket):
    orchestrator = DiscoveryOrchestrator(broadlink_socket, local_address=LOCALHOST)
    with pytest.raises(ValueError):
        orchestrator.begin(lambda data, addr: None, -1.0)
