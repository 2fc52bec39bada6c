#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Logging for broadlink_protocol package.
"""

from __future__ import annotations

import logging

from .internal_types import *

logger = logging.getLogger(__name__.rsplit('.', 1)[0])

STATUS_ONLINE = '^'
STATUS_OFFLINE = 'v'
STATUS_UNKNOWN = '?'

class DeviceLogger(logging.LoggerAdapter):
    """A logger adapter that prefixes each message with a device label and a
       one-character status marker, so that interleaved logs from several
       devices can be told apart:

           [a1:b2:c3:d4:e5:f6 ^] Sent remote code (52 bytes)

       The status is '^' if the device is online, 'v' if it is offline and '?'
       if it has not been determined yet."""

    label: str
    online: Optional[bool] = None

    def __init__(self, label: str, base_logger: Optional[logging.Logger]=None):
        super().__init__(logger if base_logger is None else base_logger, {})
        self.label = label

    def describe_status(self) -> str:
        if self.online is None:
            return STATUS_UNKNOWN
        return STATUS_ONLINE if self.online else STATUS_OFFLINE

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.label} {self.describe_status()}] {msg}", kwargs
