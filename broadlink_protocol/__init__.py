# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package broadlink_protocol implements the UDP LAN protocol spoken by Broadlink devices.

Broadlink makes inexpensive IR/RF "remote blasters" (the RM family), switchable smart
plugs (the SP family), power strips and environment sensors, all of which are controlled
over the local network with a small proprietary UDP protocol:

  - A client broadcasts a discovery request and devices answer with their model
    identity, MAC address and name.
  - The client then authenticates with a device to obtain a session key, and sends
    AES encrypted command envelopes to it, each answered by a reply envelope.

This package provides the protocol engine: packet construction and parsing, a shared
UDP socket with listener fan-out, a discovery orchestrator, a request/reply command
workflow, and per-device sessions built on top of them.
"""

from .version import __version__

from .internal_types import Jsonable, JsonableDict, HostAndPort

from .exceptions import (
    BroadlinkError,
    NetworkUnavailable,
    NoFreePort,
    UnsupportedDevice,
    MalformedPacket,
    SendFailed,
    NoResponse,
    DeviceError,
    DiscoveryFailed,
    AuthenticationFailed,
    CommandNotFound,
  )

from .models import DeviceFamily, DeviceModelClass, classify, is_supported
from .cipher import PayloadCipher
from .packet import (
    ParsedReply,
    ReplyKind,
    build_command_packet,
    build_discovery_packet,
    build_envelope,
    parse_command_packet,
    parse_reply,
  )
from .broadlink_socket import BroadlinkSocket, BroadlinkDatagramSubscriber
from .discovery import DiscoveryOrchestrator, DiscoveryRun, DiscoveryState, DiscoveredDevice, DiscoverySearch
from .command import CommandClient, CommandOutcome, CommandStatus
from .device import BroadlinkDevice, RemoteDevice, SmartPlug, create_device
from .code_map import CodeLookup, MapFileCodeLookup
from .config import ClientConfig, ConfigContext
from .pkg_logging import DeviceLogger
from .util import resolve_local_address, find_free_port
from .constants import BROADCAST_ADDRESS, DISCOVERY_PORT, DEFAULT_DISCOVERY_TIMEOUT, DEFAULT_COMMAND_TIMEOUT

__all__ = [
    '__version__',
    'Jsonable', 'JsonableDict', 'HostAndPort',
    'BroadlinkError', 'NetworkUnavailable', 'NoFreePort', 'UnsupportedDevice', 'MalformedPacket',
    'SendFailed', 'NoResponse', 'DeviceError', 'DiscoveryFailed', 'AuthenticationFailed', 'CommandNotFound',
    'DeviceFamily', 'DeviceModelClass', 'classify', 'is_supported',
    'PayloadCipher',
    'ParsedReply', 'ReplyKind', 'build_command_packet', 'build_discovery_packet', 'build_envelope',
    'parse_command_packet', 'parse_reply',
    'BroadlinkSocket', 'BroadlinkDatagramSubscriber',
    'DiscoveryOrchestrator', 'DiscoveryRun', 'DiscoveryState', 'DiscoveredDevice', 'DiscoverySearch',
    'CommandClient', 'CommandOutcome', 'CommandStatus',
    'BroadlinkDevice', 'RemoteDevice', 'SmartPlug', 'create_device',
    'CodeLookup', 'MapFileCodeLookup',
    'ClientConfig', 'ConfigContext',
    'DeviceLogger',
    'resolve_local_address', 'find_free_port',
    'BROADCAST_ADDRESS', 'DISCOVERY_PORT', 'DEFAULT_DISCOVERY_TIMEOUT', 'DEFAULT_COMMAND_TIMEOUT',
]
