#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

from __future__ import annotations

from .internal_types import *

class BroadlinkError(Exception):
  """Base class for all error exceptions defined by this package."""
  pass

class NetworkUnavailable(BroadlinkError):
  """No non-loopback IPv4 address is available for LAN traffic."""
  pass

class NoFreePort(BroadlinkError):
  """Every UDP port in the requested range is in use."""
  address: str
  low: int
  high: int

  def __init__(self, address: str, low: int, high: int):
    super().__init__(f"No free UDP port on '{address}' in range [{low}, {high})")
    self.address = address
    self.low = low
    self.high = high

class UnsupportedDevice(BroadlinkError):
  """A device reported an identity code that is not in the model registry."""
  identity: int

  def __init__(self, identity: int):
    super().__init__(
        f"Device identifying itself as '{identity}' is not currently supported. "
        "Please report this to the developer!"
      )
    self.identity = identity

class MalformedPacket(BroadlinkError):
  """A datagram failed structural validation."""
  pass

class SendFailed(BroadlinkError):
  """A datagram could not be handed to the network."""
  destination: HostAndPort
  cause: Optional[BaseException]

  def __init__(self, destination: HostAndPort, cause: Optional[BaseException]=None):
    super().__init__(f"Failed sending datagram to {destination[0]}:{destination[1]}: {cause}")
    self.destination = destination
    self.cause = cause

class NoResponse(BroadlinkError):
  """No correlated reply arrived before the exchange timed out."""
  endpoint: HostAndPort
  timeout: float

  def __init__(self, endpoint: HostAndPort, timeout: float):
    super().__init__(f"No response from {endpoint[0]}:{endpoint[1]} within {timeout} seconds")
    self.endpoint = endpoint
    self.timeout = timeout

class DeviceError(BroadlinkError):
  """A device replied with a non-zero error code."""
  error_code: int

  def __init__(self, error_code: int, endpoint: Optional[HostAndPort]=None):
    where = "" if endpoint is None else f" from {endpoint[0]}:{endpoint[1]}"
    super().__init__(f"Device returned error code 0x{error_code:04x}{where}")
    self.error_code = error_code

class DiscoveryFailed(BroadlinkError):
  """A discovery run could not send its broadcast."""
  pass

class AuthenticationFailed(BroadlinkError):
  """A device did not accept, or did not answer, an authentication request."""
  pass

class CommandNotFound(BroadlinkError):
  """A logical command name has no code in the code map."""
  name: str

  def __init__(self, name: str, source: Optional[str]=None):
    where = "" if source is None else f" in '{source}'"
    super().__init__(f"No code for command '{name}'{where}")
    self.name = name
