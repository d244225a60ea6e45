"""
Seed Keychain

Deterministic key-derivation service. Blinding factors are HKDF-SHA256
expansions of the wallet seed keyed by identifier and value, reduced into
the secp256k1 scalar field.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import secrets
from typing import Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from mwslate.records import Identifier
from mwslate.secp import N, Commitment, OutputProof, commit


class SeedKeychain:
    """Keychain satisfying :class:`mwslate.interfaces.Keychain`."""

    SALT = b"mwslate/keychain/v1"

    def __init__(self, seed: Optional[bytes] = None):
        self._seed = seed if seed is not None else secrets.token_bytes(32)
        if len(self._seed) < 16:
            raise ValueError("Keychain seed must be at least 16 bytes")

    @classmethod
    def from_hex(cls, seed_hex: str) -> "SeedKeychain":
        return cls(bytes.fromhex(seed_hex))

    def derive_key(self, value: int, key_id: Identifier) -> int:
        counter = 0
        while True:
            hkdf = HKDF(
                algorithm=hashes.SHA256(),
                length=32,
                salt=self.SALT,
                info=key_id.to_bytes() + value.to_bytes(8, "big") + bytes([counter]),
            )
            k = int.from_bytes(hkdf.derive(self._seed), "big")
            if 0 < k < N:
                return k
            counter += 1

    def commit(self, value: int, key_id: Identifier) -> Commitment:
        return commit(value, self.derive_key(value, key_id))

    def create_proof(self, value: int, key_id: Identifier, commitment: Commitment) -> OutputProof:
        return OutputProof.create(value, self.derive_key(value, key_id), commitment)
