#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Registry of Broadlink device models.

Every device reports a 16-bit identity code in its discovery reply and in the
header of every reply envelope. The registry maps that code to a DeviceModelClass,
which names the product generation and the DeviceFamily it belongs to. The table
is static and read-only, so classify() needs no locking.

Identities that are not in the table are never guessed at; classify() raises
UnsupportedDevice instead.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType

from .internal_types import *
from .exceptions import UnsupportedDevice

class DeviceFamily(Enum):
    """Broad kind of device, independent of product generation."""
    REMOTE_BLASTER = "remote"
    SMART_PLUG = "plug"
    POWER_STRIP = "strip"
    ENVIRONMENT_SENSOR = "sensor"

class DeviceModelClass(Enum):
    """A product generation. The value is a short stable name suitable for configuration files."""

    RM2 = "rm2"
    RM3 = "rm3"
    RM_PRO = "rmpro"
    RM4 = "rm4"
    SP2 = "sp2"
    SP3 = "sp3"
    MP1 = "mp1"
    A1 = "a1"

    @property
    def family(self) -> DeviceFamily:
        return _FAMILIES[self]

    @property
    def label(self) -> str:
        """A human readable description of the model."""
        return _LABELS[self]

    @property
    def command_header(self) -> bytes:
        """Bytes this generation expects in front of a framed command packet."""
        return b"\xd0\x00" if self is DeviceModelClass.RM4 else b""

_FAMILIES: Mapping[DeviceModelClass, DeviceFamily] = MappingProxyType({
    DeviceModelClass.RM2: DeviceFamily.REMOTE_BLASTER,
    DeviceModelClass.RM3: DeviceFamily.REMOTE_BLASTER,
    DeviceModelClass.RM_PRO: DeviceFamily.REMOTE_BLASTER,
    DeviceModelClass.RM4: DeviceFamily.REMOTE_BLASTER,
    DeviceModelClass.SP2: DeviceFamily.SMART_PLUG,
    DeviceModelClass.SP3: DeviceFamily.SMART_PLUG,
    DeviceModelClass.MP1: DeviceFamily.POWER_STRIP,
    DeviceModelClass.A1: DeviceFamily.ENVIRONMENT_SENSOR,
})

_LABELS: Mapping[DeviceModelClass, str] = MappingProxyType({
    DeviceModelClass.RM2: "RM2 IR remote blaster",
    DeviceModelClass.RM3: "RM mini 3 IR remote blaster",
    DeviceModelClass.RM_PRO: "RM Pro IR/RF remote blaster",
    DeviceModelClass.RM4: "RM4 IR/RF remote blaster",
    DeviceModelClass.SP2: "SP2 smart plug with energy metering",
    DeviceModelClass.SP3: "SP3 smart plug",
    DeviceModelClass.MP1: "MP1 power strip",
    DeviceModelClass.A1: "A1 environment sensor",
})

_IDENTITIES: Mapping[DeviceModelClass, Tuple[int, ...]] = {
    DeviceModelClass.RM2: (
        0x2712,  # RM2
        0x2737,  # RM Mini
        0x273d,  # RM Pro Phicomm
        0x2783,  # RM2 Home Plus
        0x277c,  # RM2 Home Plus GDT
        0x278f,  # RM Mini Shate
      ),
    DeviceModelClass.RM3: (
        0x27c2,  # RM Mini 3
        0x27d1,  # new RM Mini 3
        0x27de,  # RM Mini 3 (C)
      ),
    DeviceModelClass.RM_PRO: (
        0x272a,  # RM2 Pro Plus
        0x2787,  # RM2 Pro Plus2
        0x279d,  # RM2 Pro Plus3
        0x27a9,  # RM2 Pro Plus_300
        0x278b,  # RM2 Pro Plus BL
        0x2797,  # RM2 Pro Plus HYC
        0x27a1,  # RM2 Pro Plus R1
        0x27a6,  # RM2 Pro PP
      ),
    DeviceModelClass.RM4: (
        0x51da,  # RM4 Mini
        0x5f36,  # RM Mini 3 (RM4 firmware)
        0x6026,  # RM4 Pro
        0x6070,  # RM4c Mini
        0x610e,  # RM4 Mini
        0x610f,  # RM4c
        0x61a2,  # RM4 Pro
        0x62bc,  # RM4 Mini
        0x62be,  # RM4c
        0x6364,  # RM4S
        0x648d,  # RM4 Mini
        0x649b,  # RM4 Pro
        0x6539,  # RM4c Mini
        0x653a,  # RM4 Mini
        0x653c,  # RM4 Pro
      ),
    DeviceModelClass.SP2: (
        0x2711,  # SP2
        0x2719,  # Honeywell SP2
        0x7919,  # Honeywell SP2
        0x271a,  # Honeywell SP2
        0x791a,  # Honeywell SP2
        0x2720,  # SP Mini
        0x2728,  # SP Mini 2
        0x2733,  # OEM SP Mini
        0x273e,  # OEM SP Mini
        0x2736,  # SP Mini Plus
        0x7530,  # OEM SP Mini 2
        0x7539,  # SP Mini 2
        0x7546,  # OEM SP Mini 2
        0x7918,  # OEM SP Mini 2
        0x7d0d,  # TMall OEM SP Mini 3
      ),
    DeviceModelClass.SP3: (
        0x753e,  # SP3
        0x7d00,  # OEM SP3
        0x947a,  # SP3S
        0x9479,  # SP3S
      ),
    DeviceModelClass.MP1: (
        0x4eb5,  # MP1
        0x4ef7,  # Honyar OEM MP1
        0x4f1b,  # MP1-1K3S2U
        0x4f65,  # MP1-1K3S2U
      ),
    DeviceModelClass.A1: (
        0x2714,  # A1
      ),
}

def _build_registry() -> Mapping[int, DeviceModelClass]:
    registry: Dict[int, DeviceModelClass] = {}
    for model, identities in _IDENTITIES.items():
        for identity in identities:
            assert identity not in registry, f"Duplicate device identity 0x{identity:04x}"
            registry[identity] = model
    return MappingProxyType(registry)

MODELS_BY_IDENTITY: Mapping[int, DeviceModelClass] = _build_registry()
"""Read-only map from device identity code to model."""

def classify(identity: int) -> DeviceModelClass:
    """Returns the DeviceModelClass for a device identity code.

       Raises UnsupportedDevice (with the identity in decimal in its message) if
       the identity is not known.
    """
    model = MODELS_BY_IDENTITY.get(identity)
    if model is None:
        raise UnsupportedDevice(identity)
    return model

def is_supported(identity: int) -> bool:
    return identity in MODELS_BY_IDENTITY
