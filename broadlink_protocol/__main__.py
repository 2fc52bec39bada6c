#!/usr/bin/env python3

# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

from __future__ import annotations

import sys
import argparse
import json
import asyncio
import logging

from broadlink_protocol.internal_types import *

from broadlink_protocol import (
    __version__ as pkg_version,
    BroadlinkSocket,
    ClientConfig,
    CommandClient,
    DiscoveredDevice,
    DiscoveryOrchestrator,
    MapFileCodeLookup,
    RemoteDevice,
    UnsupportedDevice,
    classify,
    create_device,
  )

class CmdExitError(RuntimeError):
    exit_code: int

    def __init__(self, exit_code: int, msg: Optional[str]=None):
        if msg is None:
            msg = f"Command exited with return code {exit_code}"
        super().__init__(msg)
        self.exit_code = exit_code

class ArgparseExitError(CmdExitError):
    pass

class NoExitArgumentParser(argparse.ArgumentParser):
    def exit(self, status=0, message=None):
        if message:
            self._print_message(message, sys.stderr)
        raise ArgparseExitError(status, message)

def device_summary(device: DiscoveredDevice) -> JsonableDict:
    summary: JsonableDict = {
        "host": device.host,
        "port": device.port,
        "mac": device.mac_address,
        "identity": f"0x{device.identity:04x}",
        "name": device.name,
        "locked": device.is_locked,
        "supported": device.is_supported,
        "utc_time": device.utc_time.isoformat(),
    }
    if device.is_supported:
        summary["model"] = device.model.value
        summary["family"] = device.model.family.value
        summary["label"] = device.model.label
    return summary

class CommandHandler:
    _argv: Optional[Sequence[str]]
    _parser: argparse.ArgumentParser
    _args: argparse.Namespace
    _provide_traceback: bool = True
    _config: Optional[ClientConfig] = None

    def __init__(self, argv: Optional[Sequence[str]]=None):
        self._argv = argv

    def get_config(self) -> ClientConfig:
        if self._config is None:
            config_file: Optional[str] = self._args.config_file
            self._config = ClientConfig() if config_file is None else ClientConfig.load_file(config_file)
        return self._config

    def create_socket(self) -> BroadlinkSocket:
        cfg = self.get_config()
        bind_address: Optional[str] = getattr(self._args, 'bind_address', None)
        return BroadlinkSocket(
            bind_address=cfg.bind_address if bind_address is None else bind_address,
            bind_port=cfg.bind_port,
          )

    def create_orchestrator(self, broadlink_socket: BroadlinkSocket, broadcast_address: Optional[str]=None) -> DiscoveryOrchestrator:
        cfg = self.get_config()
        local_address: Optional[str] = getattr(self._args, 'local_address', None)
        return DiscoveryOrchestrator(
            broadlink_socket,
            broadcast_address=cfg.broadcast_address if broadcast_address is None else broadcast_address,
            discovery_port=cfg.discovery_port,
            local_address=cfg.local_address if local_address is None else local_address,
            default_timeout=cfg.discovery_timeout,
          )

    async def cmd_bare(self) -> int:
        print("A command is required", file=sys.stderr)
        return 1

    async def cmd_discover(self) -> int:
        wait_time: Optional[float] = self._args.wait_time
        broadcast_address: Optional[str] = self._args.broadcast_address
        async with self.create_socket() as broadlink_socket:
            orchestrator = self.create_orchestrator(broadlink_socket, broadcast_address)
            async with orchestrator.search(wait_time) as search:
                async for device in search:
                    print(json.dumps(device_summary(device), indent=2, sort_keys=True))
                    sys.stdout.flush()
        return 0

    async def cmd_classify(self) -> int:
        identity_s: str = self._args.identity
        try:
            identity = int(identity_s, 0)
        except ValueError:
            raise CmdExitError(2, f"Invalid device identity: '{identity_s}'")
        try:
            model = classify(identity)
        except UnsupportedDevice as ex:
            raise CmdExitError(1, str(ex)) from ex
        summary: JsonableDict = {
            "identity": f"0x{identity:04x}",
            "model": model.value,
            "family": model.family.value,
            "label": model.label,
        }
        print(json.dumps(summary, indent=2, sort_keys=True))
        return 0

    def _resolve_code(self) -> bytes:
        code_hex: Optional[str] = self._args.code
        command_name: Optional[str] = self._args.command_name
        if command_name is None:
            if code_hex is None:
                raise CmdExitError(2, "Either a hex code or --command is required")
            try:
                return bytes.fromhex(''.join(code_hex.split()))
            except ValueError as ex:
                raise CmdExitError(2, f"Invalid hex code: {ex}") from ex
        if code_hex is not None:
            raise CmdExitError(2, "A hex code and --command are mutually exclusive")
        map_file: Optional[str] = self._args.map_file
        if map_file is None:
            map_file = self.get_config().code_map_file
        if map_file is None:
            raise CmdExitError(2, "--command requires --map-file or code_map_file in the configuration")
        return MapFileCodeLookup(map_file).resolve_command_bytes(command_name)

    async def cmd_send(self) -> int:
        host: str = self._args.host
        wait_time: Optional[float] = self._args.wait_time
        code = self._resolve_code()
        cfg = self.get_config()
        async with self.create_socket() as broadlink_socket:
            orchestrator = self.create_orchestrator(broadlink_socket, broadcast_address=host)
            devices = [ d for d in await orchestrator.discover(wait_time) if d.host == host ]
            if len(devices) == 0:
                raise CmdExitError(1, f"No Broadlink device answered at {host}")
            device = create_device(CommandClient(broadlink_socket, timeout=cfg.command_timeout), devices[0])
            if not isinstance(device, RemoteDevice):
                raise CmdExitError(1, f"{device} is not a remote blaster")
            await device.authenticate()
            outcome = await device.send_code(code)
            outcome.raise_for_status()
        return 0

    async def cmd_version(self) -> int:
        print(pkg_version)
        return 0

    async def arun(self) -> int:
        """Run the broadlink command-line tool with provided arguments

        Args:
            argv (Optional[Sequence[str]], optional):
                A list of commandline arguments (NOT including the program as argv[0]!),
                or None to use sys.argv[1:]. Defaults to None.

        Returns:
            int: The exit code that would be returned if this were run as a standalone command.
        """
        parser = NoExitArgumentParser(description="Discover and control Broadlink devices on the local network.")


        # ======================= Main command

        self._parser = parser
        parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                            help='Display detailed exception information')
        parser.add_argument('--log-level', dest='log_level', default='warning',
                            choices=['debug', 'info', 'warning', 'error', 'critical'],
                            help='''The logging level to use. Default: warning''')
        parser.add_argument('-c', '--config', dest='config_file', default=None,
                            help='''A JSON configuration file. Default: built-in defaults''')
        parser.set_defaults(func=self.cmd_bare)

        subparsers = parser.add_subparsers(
                            title='Commands',
                            description='Valid commands',
                            help='Additional help available with "<command-name> -h"')


        # ======================= discover

        parser_discover = subparsers.add_parser('discover', description="Broadcast a discovery request and list the devices that answer")
        parser_discover.add_argument('--wait-time', type=float, default=None,
                            help='''The amount of time to wait for responses, in seconds. Default: from configuration, or 5 seconds''')
        parser_discover.add_argument('-b', '--bind', dest="bind_address", default=None,
                            help='''The local IPv4 address to bind to. Default: all interfaces''')
        parser_discover.add_argument('--local-address', dest="local_address", default=None,
                            help='''The LAN address to advertise in the discovery request. Default: the preferred local address''')
        parser_discover.add_argument('--broadcast-address', dest="broadcast_address", default=None,
                            help='''The address to send the discovery request to. Default: 255.255.255.255''')
        parser_discover.set_defaults(func=self.cmd_discover)

        # ======================= classify

        parser_classify = subparsers.add_parser('classify', description="Show the model of a device identity code")
        parser_classify.add_argument('identity',
                            help='''The 16-bit device identity, in decimal or 0x-prefixed hex''')
        parser_classify.set_defaults(func=self.cmd_classify)

        # ======================= send

        parser_send = subparsers.add_parser('send', description="Transmit an IR/RF code through a remote blaster")
        parser_send.add_argument('--host', required=True,
                            help='''The IPv4 address of the remote blaster''')
        parser_send.add_argument('code', nargs='?', default=None,
                            help='''The code to transmit, in hex''')
        parser_send.add_argument('--command', dest='command_name', default=None,
                            help='''The name of a code in the code map file, instead of a hex code''')
        parser_send.add_argument('--map-file', dest='map_file', default=None,
                            help='''The code map file to look up --command in. Default: code_map_file from configuration''')
        parser_send.add_argument('--wait-time', type=float, default=None,
                            help='''The amount of time to wait for the device to answer discovery, in seconds''')
        parser_send.add_argument('-b', '--bind', dest="bind_address", default=None,
                            help='''The local IPv4 address to bind to. Default: all interfaces''')
        parser_send.add_argument('--local-address', dest="local_address", default=None,
                            help='''The LAN address to advertise in the discovery request. Default: the preferred local address''')
        parser_send.set_defaults(func=self.cmd_send)

        # ======================= version

        parser_version = subparsers.add_parser('version',
                                description='''Display version information.''')
        parser_version.set_defaults(func=self.cmd_version)

        # =========================================================

        try:
            args = parser.parse_args(self._argv)
        except ArgparseExitError as ex:
            return ex.exit_code
        traceback: bool = args.traceback
        self._provide_traceback = traceback

        try:
            logging.basicConfig(
                level=logging.getLevelName(args.log_level.upper()),
            )
            self._args = args
            func: Callable[[], Awaitable[int]] = args.func
            logging.debug(f"Running command {func.__name__}, tb = {traceback}")
            rc = await func()
            logging.debug(f"Command {func.__name__} returned {rc}")
        except Exception as ex:
            if isinstance(ex, CmdExitError):
                rc = ex.exit_code
            else:
                rc = 1
            if rc != 0:
                if traceback:
                    raise
            print(f"broadlink: error: {ex}", file=sys.stderr)
        except BaseException as ex:
            print(f"broadlink: Unhandled exception: {ex}", file=sys.stderr)
            raise

        return rc

    def run(self) -> int:
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            rc = loop.run_until_complete(self.arun())
        finally:
            loop.close()
        return rc

def run(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = CommandHandler(argv).run()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

async def arun(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = await CommandHandler(argv).arun()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

# allow running with "python3 -m", or as a standalone script
if __name__ == "__main__":
    sys.exit(run())
