#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

from __future__ import annotations

import asyncio

import pytest

from broadlink_protocol.internal_types import *
from broadlink_protocol import BroadlinkSocket, CommandClient

from tests.common import LOCALHOST, FakeDevice, DatagramHandler


@pytest.fixture
async def broadlink_socket() -> AsyncIterator[BroadlinkSocket]:
    """A started BroadlinkSocket on an ephemeral loopback port."""
    async with BroadlinkSocket(bind_address=LOCALHOST, bind_port=0) as s:
        yield s


@pytest.fixture
def command_client(broadlink_socket: BroadlinkSocket) -> CommandClient:
    return CommandClient(broadlink_socket, timeout=1.0)


@pytest.fixture
async def fake_device_factory() -> AsyncIterator[Callable[..., Awaitable[FakeDevice]]]:
    """Creates FakeDevice endpoints on ephemeral loopback ports; all are closed at teardown."""
    devices: List[FakeDevice] = []

    async def create(handler: Optional[DatagramHandler]=None) -> FakeDevice:
        loop = asyncio.get_running_loop()
        _, protocol = await loop.create_datagram_endpoint(
            lambda: FakeDevice(handler),
            local_addr=(LOCALHOST, 0),
          )
        devices.append(protocol)
        return protocol

    yield create

    for device in devices:
        device.close()
