from __future__ import annotations

import hashlib
import hmac
import os
from dataclasses import dataclass

from argon2.exceptions import HashingError
from argon2.low_level import Type as ArgonType, hash_secret_raw
from Cryptodome.Cipher import ChaCha20_Poly1305


NONCE_SIZE = 24  # XChaCha20-Poly1305
TAG_SIZE = 16
KEY_SIZE = 32
SALT_SIZE = 16

# Default Argon2id parameters for archive encryption
ARGON_TIME_COST = 3
ARGON_MEMORY_COST_KIB = 256 * 1024  # 256 MiB
ARGON_PARALLELISM = 4

# Upper bounds accepted from an archive header, so a crafted file cannot make
# open() allocate unbounded memory
MAX_ARGON_TIME_COST = 16
MAX_ARGON_MEMORY_COST_KIB = 4 * 1024 * 1024
MAX_ARGON_PARALLELISM = 64


@dataclass
class EncryptionParams:
    salt: bytes
    time_cost: int = ARGON_TIME_COST
    memory_cost_kib: int = ARGON_MEMORY_COST_KIB
    parallelism: int = ARGON_PARALLELISM

    def check(self) -> None:
        if len(self.salt) != SALT_SIZE:
            raise ValueError("KDF salt must be 16 bytes")
        if not 1 <= self.time_cost <= MAX_ARGON_TIME_COST:
            raise ValueError("Unsupported Argon2 time cost in archive")
        if not 1 <= self.parallelism <= MAX_ARGON_PARALLELISM:
            raise ValueError("Unsupported Argon2 parallelism in archive")
        if not 8 * self.parallelism <= self.memory_cost_kib <= MAX_ARGON_MEMORY_COST_KIB:
            raise ValueError("Unsupported Argon2 memory cost in archive")


def _derive_key(password: str, params: EncryptionParams) -> bytes:
    params.check()
    try:
        return hash_secret_raw(
            password.encode("utf-8"),
            params.salt,
            time_cost=params.time_cost,
            memory_cost=params.memory_cost_kib,
            parallelism=params.parallelism,
            hash_len=KEY_SIZE,
            type=ArgonType.ID,
        )
    except HashingError as e:
        raise ValueError(f"Argon2 key derivation failed: {e}") from e


class EncryptionContext:
    """Record-level AEAD keyed from a password.

    Nonces are derived from the record offset, which is unique per archive
    because archives are written once and never rewritten in place.
    """

    def __init__(self, key: bytes, params: EncryptionParams):
        if len(key) != KEY_SIZE:
            raise ValueError("Key must be 32 bytes for XChaCha20-Poly1305")
        self.key = key
        self.params = params

    @classmethod
    def create(
        cls,
        password: str,
        *,
        time_cost: int = ARGON_TIME_COST,
        memory_cost_kib: int = ARGON_MEMORY_COST_KIB,
        parallelism: int = ARGON_PARALLELISM,
    ) -> "EncryptionContext":
        params = EncryptionParams(
            salt=os.urandom(SALT_SIZE),
            time_cost=time_cost,
            memory_cost_kib=memory_cost_kib,
            parallelism=parallelism,
        )
        return cls(_derive_key(password, params), params)

    @classmethod
    def from_params(cls, password: str, params: EncryptionParams) -> "EncryptionContext":
        return cls(_derive_key(password, params), params)

    def _derive_nonce(self, nonce_material: bytes) -> bytes:
        return hmac.new(self.key, b"SEQARC_REC_NONCE" + nonce_material, hashlib.sha512).digest()[:NONCE_SIZE]

    def encrypt(self, aad: bytes, plaintext: bytes, *, nonce_material: bytes) -> bytes:
        nonce = self._derive_nonce(nonce_material)
        cipher = ChaCha20_Poly1305.new(key=self.key, nonce=nonce)
        cipher.update(aad)
        ciphertext, tag = cipher.encrypt_and_digest(plaintext)
        return nonce + ciphertext + tag

    def decrypt(self, aad: bytes, payload: bytes) -> bytes:
        """Verify and decrypt; raises ValueError on a wrong key or tampered data."""
        if len(payload) < NONCE_SIZE + TAG_SIZE:
            raise ValueError("Encrypted payload too short")
        nonce = payload[:NONCE_SIZE]
        tag = payload[-TAG_SIZE:]
        ciphertext = payload[NONCE_SIZE:-TAG_SIZE]
        cipher = ChaCha20_Poly1305.new(key=self.key, nonce=nonce)
        cipher.update(aad)
        return cipher.decrypt_and_verify(ciphertext, tag)

    def overhead(self) -> int:
        return NONCE_SIZE + TAG_SIZE
