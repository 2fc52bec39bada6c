#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Network utility functions used by this package
"""

from __future__ import annotations

import socket
from ipaddress import IPv4Address

import netifaces

from .internal_types import *
from .pkg_logging import logger
from .exceptions import NetworkUnavailable, NoFreePort

def get_default_ipv4_gateway() -> Tuple[Optional[str], Optional[str]]:
    """Returns the (gateway_ip_address: str, gateway_interface_name: str) for the default IPv4 gateway.
       returns (None, None) if there is no default gateway."""
    gws = netifaces.gateways()
    if "default" in gws:
        default_gateway_infos = gws["default"]
        if netifaces.AF_INET in default_gateway_infos:
            gw_ip, gw_interface_name = default_gateway_infos[netifaces.AF_INET][:2]
            return (gw_ip, gw_interface_name)
    return (None, None)

def get_local_ipv4_addresses_and_interfaces(include_loopback: bool=True) -> List[Tuple[str, str]]:
    """Returns a list of Tuple[ip_address: str, interface_name: str] for the IPv4 addresses of the local host.
       The result is sorted in a way that attempts to place the "preferred" LAN address first in the list,
       according to the following scheme:
           1. Addresses on the default gateway interface precede all other addresses.
           2. Non-loopback addresses precede loopback addresses.
           3. Addresses that begin with 172. follow other addresses. This is a hack to
              deprioritize local docker network addresses.
    """
    result_with_priority: List[Tuple[int, str, str]] = []
    _, default_gateway_ifname = get_default_ipv4_gateway()
    for ifname in netifaces.interfaces():
        ifinfo = netifaces.ifaddresses(ifname)
        for addrinfo in ifinfo.get(netifaces.AF_INET, []):
            ip_str = addrinfo.get('addr')
            if not isinstance(ip_str, str):
                continue
            if IPv4Address(ip_str).is_loopback:
                if not include_loopback:
                    continue
                priority = 3
            elif ifname == default_gateway_ifname:
                priority = 0
            elif ip_str.startswith('172.'):
                priority = 2
            else:
                priority = 1
            result_with_priority.append((priority, ip_str, ifname))
    return [ (ip, ifname) for _, ip, ifname in sorted(result_with_priority)]

def get_local_ipv4_addresses(include_loopback: bool=True) -> List[str]:
    """Returns a List[ip_address: str] for the IPv4 addresses of the local host, preferred address first.
       See get_local_ipv4_addresses_and_interfaces() for the ordering."""
    return [ ip for ip, _ in get_local_ipv4_addresses_and_interfaces(include_loopback=include_loopback)]

def resolve_local_address() -> str:
    """Returns the non-loopback IPv4 address of this host that should be used for LAN traffic.

       Raises NetworkUnavailable if the host has no such address.
    """
    addresses = get_local_ipv4_addresses(include_loopback=False)
    if len(addresses) == 0:
        raise NetworkUnavailable("No non-loopback IPv4 address is configured on this host")
    logger.debug(f"Resolved local LAN address {addresses[0]} (candidates: {addresses})")
    return addresses[0]

def find_free_port(address: str, low: int, high: int) -> int:
    """Returns the first UDP port in [low, high) that can be bound on address.

       The probe socket is closed before returning, so the port is only known to have
       been free at the time of the call.

       Raises NoFreePort if every port in the range is in use.
    """
    for port in range(low, high):
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            try:
                sock.bind((address, port))
            except OSError:
                continue
        return port
    raise NoFreePort(address, low, high)

def ipv4_to_wire(address: str) -> bytes:
    """Encodes an IPv4 address string the way devices expect it: 4 bytes, little-endian."""
    return int(IPv4Address(address)).to_bytes(4, 'little')

def wire_to_ipv4(data: bytes) -> str:
    """Decodes 4 little-endian bytes into an IPv4 address string."""
    return str(IPv4Address(int.from_bytes(data[:4], 'little')))

def format_mac(mac: bytes) -> str:
    """Formats a MAC address received in wire order (least significant byte first)
       as the usual colon-separated string."""
    return ':'.join(f"{b:02x}" for b in reversed(mac))

def parse_mac(mac_address: str) -> bytes:
    """Parses a colon or dash separated MAC address string into wire order bytes."""
    parts = mac_address.replace('-', ':').split(':')
    if len(parts) != 6:
        raise ValueError(f"Invalid MAC address: '{mac_address}'")
    return bytes(int(part, 16) for part in reversed(parts))
