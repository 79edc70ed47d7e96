from __future__ import annotations

import hashlib


def blake2s_32(data: bytes) -> bytes:
    return hashlib.blake2s(data, digest_size=32).digest()


def block_tag(residues: bytes) -> bytes:
    """16-byte tag stored beside every block; domain-separated from index hashes."""
    return hashlib.blake2s(residues, digest_size=16, person=b"SQABLOCK").digest()
