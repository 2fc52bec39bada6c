# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants used by this package"""

BROADCAST_ADDRESS = "255.255.255.255"
"""The address discovery requests are broadcast to."""

DISCOVERY_PORT = 80
"""The UDP port devices listen on for discovery requests."""

DEVICE_PORT = 80
"""The UDP port devices listen on for commands."""

LOCAL_PORT_LOW = 1024
"""Lowest local UDP port (inclusive) considered when binding the shared socket."""

LOCAL_PORT_HIGH = 3000
"""Highest local UDP port (exclusive) considered when binding the shared socket."""

DEFAULT_DISCOVERY_TIMEOUT = 5.0
"""The default amount of time (in seconds) a discovery run waits for replies."""

DEFAULT_COMMAND_TIMEOUT = 5.0
"""The default amount of time (in seconds) a command exchange waits for a reply."""

BLOCK_SIZE = 16
"""Packets and encrypted payloads are padded to a multiple of this many bytes."""

COMMAND_PREAMBLE_LENGTH = 4
"""Length of the preamble in front of a framed command payload."""

MIN_PACKET_LENGTH = COMMAND_PREAMBLE_LENGTH
"""Datagrams shorter than this are dropped by the socket."""

DISCOVERY_PACKET_LENGTH = 0x30
"""Length of a discovery request, and the minimum length of any checksummed envelope."""

ENVELOPE_HEADER_LENGTH = 0x38
"""Length of the header in front of the encrypted payload of an envelope."""

DISCOVERY_REPLY_MIN_LENGTH = 0x40
"""A discovery reply must at least reach the device name field."""

CHECKSUM_SEED = 0xbeaf

ENVELOPE_MAGIC = bytes.fromhex("5aa5aa555aa5aa55")

CLIENT_DEVICE_TYPE = 0x272a
"""The device type this package reports in envelopes it sends."""

REPLY_CODE_OFFSET = 0x384
"""Devices answer command C with reply code C + REPLY_CODE_OFFSET."""

# Envelope command codes (offset 0x26)
CMD_DISCOVERY = 0x06
CMD_DISCOVERY_REPLY = 0x07
CMD_AUTHENTICATE = 0x65
CMD_COMMAND = 0x6a

# Framed command types carried inside a CMD_COMMAND envelope
REMOTE_SEND_CODE = 0x02
PLUG_CHECK_POWER = 0x01
PLUG_SET_POWER = 0x02

INITIAL_KEY = bytes.fromhex("097628343fe99e23765c1513accf8b02")
"""AES key used until a device hands out a session key."""

INITIAL_IV = bytes.fromhex("562e17996d093d28ddb3ba695a2e6f58")
"""AES-CBC initialization vector; fixed for the lifetime of the protocol."""
