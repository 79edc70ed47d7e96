from __future__ import annotations

import struct
import time
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Optional

from .constants import SUPERBLOCK_MAGIC, VERSION_MAJOR, VERSION_MINOR, KDF_NONE, KDF_ARGON2ID
from .encryption import EncryptionParams
from .errors import SuperblockError


# Fields (little endian):
# magic[8], ver_major u16, ver_minor u16, flags u32,
# uuid[16], created_sec u64,
# block_size u32, default_codec u16, kdf_id u16,
# kdf_salt[16], argon_mem u32, argon_time u32, argon_lanes u32,
# reserved[12], header_crc32 u32
_SUPERBLOCK_STRUCT = struct.Struct("<8sHHI16sQ I H H 16s III 12s I")
SUPERBLOCK_SIZE = _SUPERBLOCK_STRUCT.size


@dataclass
class Superblock:
    version_major: int
    version_minor: int
    flags: int
    uuid: bytes
    created_sec: int
    block_size: int
    default_codec: int
    kdf_id: int = KDF_NONE
    kdf_salt: bytes = b"\x00" * 16
    argon_memory_cost: int = 0
    argon_time_cost: int = 0
    argon_parallelism: int = 0

    def encryption_params(self) -> Optional[EncryptionParams]:
        if self.kdf_id == KDF_NONE:
            return None
        return EncryptionParams(
            salt=self.kdf_salt,
            time_cost=self.argon_time_cost,
            memory_cost_kib=self.argon_memory_cost,
            parallelism=self.argon_parallelism,
        )


def pack_superblock(
    flags: int,
    archive_uuid: bytes,
    block_size: int,
    default_codec: int,
    enc_params: Optional[EncryptionParams],
) -> bytes:
    if enc_params is not None:
        kdf_id = KDF_ARGON2ID
        salt = enc_params.salt
        argon_mem = enc_params.memory_cost_kib
        argon_time = enc_params.time_cost
        argon_lanes = enc_params.parallelism
    else:
        kdf_id = KDF_NONE
        salt = b"\x00" * 16
        argon_mem = argon_time = argon_lanes = 0
    pre = _SUPERBLOCK_STRUCT.pack(
        SUPERBLOCK_MAGIC,
        VERSION_MAJOR,
        VERSION_MINOR,
        flags,
        archive_uuid,
        int(time.time()),
        block_size,
        default_codec,
        kdf_id,
        salt,
        argon_mem,
        argon_time,
        argon_lanes,
        b"\x00" * 12,
        0,  # crc placeholder
    )
    crc = zlib.crc32(pre[:-4])
    return pre[:-4] + struct.pack("<I", crc)


def read_superblock(f: BinaryIO) -> Superblock:
    f.seek(0)
    raw = f.read(SUPERBLOCK_SIZE)
    if len(raw) != SUPERBLOCK_SIZE:
        raise SuperblockError("Superblock too short")
    (magic, vmaj, vmin, flags, uuid, csec, bsize, dcodec, kdf_id, kdf_salt, amem, atime, alanes, _res12, hdr_crc) = _SUPERBLOCK_STRUCT.unpack(raw)
    if magic != SUPERBLOCK_MAGIC:
        raise SuperblockError("Bad superblock magic")
    if zlib.crc32(raw[:-4]) != hdr_crc:
        raise SuperblockError("Superblock CRC mismatch")
    if vmaj != VERSION_MAJOR:
        raise SuperblockError(f"Unsupported archive version {vmaj}.{vmin}")
    if bsize <= 0:
        raise SuperblockError("Superblock block size must be positive")
    return Superblock(
        version_major=vmaj,
        version_minor=vmin,
        flags=flags,
        uuid=uuid,
        created_sec=csec,
        block_size=bsize,
        default_codec=dcodec,
        kdf_id=kdf_id,
        kdf_salt=kdf_salt,
        argon_memory_cost=amem,
        argon_time_cost=atime,
        argon_parallelism=alanes,
    )
