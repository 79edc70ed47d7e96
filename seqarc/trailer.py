from __future__ import annotations

import os
import struct
import zlib
from typing import BinaryIO, Optional

from .constants import (
    INDEX_FRAME_MAGIC,
    INDEX_LOC_MAGIC,
    FRAME_FLAG_COMPRESSED,
    FRAME_FLAG_ENCRYPTED,
)
from .encryption import EncryptionContext
from .hashutil import blake2s_32


# magic[8], flags u32, uncompressed_len u64, index_blake2s_32[32]
IDX_FRAME_HDR = struct.Struct("<8sI Q 32s")
# magic[8], frame_len u64, frame_offset u64, seq u32, uuid[16], crc32 u32
IDX_LOC_STRUCT = struct.Struct("<8sQQI16sI")
IDX_FRAME_AAD = b"IDXFRAME"


def locator_crc(frame_len: int, frame_offset: int, seq: int, archive_uuid: bytes) -> int:
    return zlib.crc32(INDEX_LOC_MAGIC + struct.pack("<QQI16s", frame_len, frame_offset, seq, archive_uuid))


def write_index_trailer(
    fh: BinaryIO,
    encryptor: Optional[EncryptionContext],
    archive_uuid: bytes,
    index_payload: bytes,
) -> None:
    """Write two identical index frames followed by two locators."""
    frame_flags = 0
    compressed = zlib.compress(index_payload, level=6)
    if len(compressed) < len(index_payload):
        frame_flags |= FRAME_FLAG_COMPRESSED
    else:
        compressed = index_payload
    if encryptor is not None:
        frame_flags |= FRAME_FLAG_ENCRYPTED

    frame_plain = IDX_FRAME_HDR.pack(INDEX_FRAME_MAGIC, frame_flags, len(index_payload), blake2s_32(index_payload))
    frame_plain += compressed
    frame_plain += struct.pack("<I", zlib.crc32(frame_plain))

    frame_locs = []
    for seq in (0, 1):
        frame_start = fh.tell()
        if encryptor is not None:
            frame = encryptor.encrypt(IDX_FRAME_AAD, frame_plain, nonce_material=struct.pack("<Q", frame_start))
        else:
            frame = frame_plain
        fh.write(frame)
        frame_locs.append((seq, frame_start, len(frame)))
    for seq, frame_start, flen in frame_locs:
        crc = locator_crc(flen, frame_start, seq, archive_uuid)
        fh.write(IDX_LOC_STRUCT.pack(INDEX_LOC_MAGIC, flen, frame_start, seq, archive_uuid, crc))
    fh.flush()
    os.fsync(fh.fileno())
