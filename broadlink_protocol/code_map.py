#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Lookup of learned IR/RF codes by logical command name.

A map file holds one entry per line:

    # Living room TV
    POWER=2600500000012...
    VOLUME_UP = 26 00 50 00 00 01 28 ...

Blank lines and lines starting with '#' are ignored. Whitespace inside the hex
string is allowed.
"""

from __future__ import annotations

import os

from .internal_types import *
from .pkg_logging import logger
from .exceptions import CommandNotFound

class CodeLookup(Protocol):
    """Anything that can turn a command name into the raw code to transmit."""

    def resolve_command_bytes(self, name: str) -> bytes:
        """Returns the code for name. Raises CommandNotFound if there is none."""
        ...

class MapFileCodeLookup:
    path: str
    codes: Dict[str, bytes]

    def __init__(self, path: str):
        self.path = os.path.abspath(os.path.expanduser(path))
        with open(self.path) as f:
            self.codes = self.parse(f.read(), source=self.path)
        logger.debug(f"Loaded {len(self.codes)} codes from {self.path}")

    @classmethod
    def parse(cls, text: str, source: str="<string>") -> Dict[str, bytes]:
        """Parses map file text. Raises ValueError for lines that are not name=hex."""
        codes: Dict[str, bytes] = {}
        for line_number, line in enumerate(text.splitlines(), start=1):
            line = line.strip()
            if line == '' or line.startswith('#'):
                continue
            if '=' not in line:
                raise ValueError(f"{source}:{line_number}: Expected name=hex, got '{line}'")
            name, hex_code = line.split('=', 1)
            name = name.strip()
            if name == '':
                raise ValueError(f"{source}:{line_number}: Missing command name")
            try:
                codes[name] = bytes.fromhex(''.join(hex_code.split()))
            except ValueError as e:
                raise ValueError(f"{source}:{line_number}: Invalid hex code for '{name}': {e}") from e
        return codes

    def resolve_command_bytes(self, name: str) -> bytes:
        code = self.codes.get(name)
        if code is None or len(code) == 0:
            raise CommandNotFound(name, self.path)
        return code

    def __contains__(self, name: str) -> bool:
        return name in self.codes

    def __len__(self) -> int:
        return len(self.codes)
