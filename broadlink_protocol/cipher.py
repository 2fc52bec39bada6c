#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
AES-128-CBC payload encryption used by envelope packets.

A device starts out accepting payloads encrypted with a well-known initial key.
Authentication hands out a per-session key, after which a new PayloadCipher is
derived with with_key(). The IV never changes.
"""

from __future__ import annotations

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .internal_types import *
from .constants import BLOCK_SIZE, INITIAL_KEY, INITIAL_IV
from .exceptions import MalformedPacket

class PayloadCipher:
    key: bytes
    iv: bytes
    _cipher: Cipher

    def __init__(self, key: bytes=INITIAL_KEY, iv: bytes=INITIAL_IV):
        if len(key) != 16:
            raise ValueError(f"AES key must be 16 bytes, got {len(key)}")
        self.key = bytes(key)
        self.iv = bytes(iv)
        self._cipher = Cipher(algorithms.AES(self.key), modes.CBC(self.iv))

    def with_key(self, key: bytes) -> PayloadCipher:
        """Returns a cipher with the same IV and a new key."""
        return PayloadCipher(key, self.iv)

    def encrypt(self, payload: bytes) -> bytes:
        """Encrypts a payload whose length is a multiple of 16. Callers pad first."""
        if len(payload) % BLOCK_SIZE != 0:
            raise ValueError(f"Payload length {len(payload)} is not a multiple of {BLOCK_SIZE}")
        encryptor = self._cipher.encryptor()
        return encryptor.update(payload) + encryptor.finalize()

    def decrypt(self, payload: bytes) -> bytes:
        if len(payload) % BLOCK_SIZE != 0:
            raise MalformedPacket(f"Encrypted payload length {len(payload)} is not a multiple of {BLOCK_SIZE}")
        decryptor = self._cipher.decryptor()
        return decryptor.update(payload) + decryptor.finalize()

    def __repr__(self) -> str:
        return f"PayloadCipher(key={self.key.hex()})"
