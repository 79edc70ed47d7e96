from __future__ import annotations

import struct
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Optional, Tuple

from .constants import (
    REC_SYNC,
    RFLAG_HEADER_EXT,
)
from .encryption import EncryptionContext


# Record header (fixed 24 bytes)
# struct: <4s B B H Q I I
#  - sync[4]
#  - rtype u8
#  - rflags u8
#  - header_len u16 (bytes after this fixed header up to payload)
#  - payload_len u64
#  - header_crc32 u32 (over fixed header without crc, plus header_ext)
#  - reserved u32
_REC_HDR_STRUCT = struct.Struct("<4sBBHQII")
# sample_index u32, contig_index u32, block_index u32, residues u32,
# codec u16, flags u16, blake2s tag[16]
_BLOCK_HDR_EXT_STRUCT = struct.Struct("<IIIIHH16s")


@dataclass
class RecordHeader:
    rtype: int
    rflags: int
    header_ext: bytes
    payload_len: int

    def pack(self) -> bytes:
        header_len = len(self.header_ext)
        rflags = self.rflags | (RFLAG_HEADER_EXT if header_len else 0)
        pre_crc = _REC_HDR_STRUCT.pack(REC_SYNC, self.rtype, rflags, header_len, self.payload_len, 0, 0)
        crc = zlib.crc32(pre_crc[:-8] + self.header_ext)  # exclude crc field and reserved
        return _REC_HDR_STRUCT.pack(REC_SYNC, self.rtype, rflags, header_len, self.payload_len, crc, 0) + self.header_ext


@dataclass
class BlockHeader:
    sample_index: int
    contig_index: int
    block_index: int
    residues: int
    codec_id: int
    flags: int
    tag16: bytes

    def pack(self) -> bytes:
        if len(self.tag16) != 16:
            raise ValueError("tag16 must be 16 bytes")
        return _BLOCK_HDR_EXT_STRUCT.pack(
            self.sample_index,
            self.contig_index,
            self.block_index,
            self.residues,
            self.codec_id,
            self.flags,
            self.tag16,
        )

    @classmethod
    def unpack(cls, header_ext: bytes) -> "BlockHeader":
        if len(header_ext) < _BLOCK_HDR_EXT_STRUCT.size:
            raise ValueError("block header_ext too short")
        return cls(*_BLOCK_HDR_EXT_STRUCT.unpack(header_ext[: _BLOCK_HDR_EXT_STRUCT.size]))


def write_record(
    f: BinaryIO,
    rtype: int,
    rflags: int,
    header_ext: bytes,
    payload: bytes,
    encryptor: Optional[EncryptionContext] = None,
) -> Tuple[int, int]:
    """Append one record at the current position.

    Returns (record_offset, stored_payload_len).
    """
    payload_len = len(payload)
    if encryptor is not None:
        payload_len += encryptor.overhead()
    hdr_bytes = RecordHeader(rtype=rtype, rflags=rflags, header_ext=header_ext, payload_len=payload_len).pack()
    off = f.tell()
    final_payload = (
        payload
        if encryptor is None
        else encryptor.encrypt(hdr_bytes, payload, nonce_material=struct.pack("<Q", off))
    )
    f.write(hdr_bytes)
    f.write(final_payload)
    return off, len(final_payload)


def read_exact(f: BinaryIO, n: int) -> bytes:
    b = f.read(n)
    if len(b) != n:
        raise EOFError("Unexpected EOF")
    return b


def read_record_at(f: BinaryIO, offset: int, decryptor: Optional[EncryptionContext] = None):
    f.seek(offset)
    return read_record(f, decryptor=decryptor)


def read_record(f: BinaryIO, decryptor: Optional[EncryptionContext] = None):
    fixed = read_exact(f, _REC_HDR_STRUCT.size)
    sync, rtype, rflags, header_len, payload_len, hdr_crc, _reserved = _REC_HDR_STRUCT.unpack(fixed)
    if sync != REC_SYNC:
        raise ValueError("Bad record sync")
    header_ext = read_exact(f, header_len) if header_len else b""
    if zlib.crc32(fixed[:-8] + header_ext) != hdr_crc:
        raise ValueError("Record header CRC32 mismatch")
    payload = read_exact(f, payload_len)
    if decryptor is not None:
        payload = decryptor.decrypt(fixed + header_ext, payload)
    return rtype, rflags, header_ext, payload


BLOCK_HEADER_EXT_SIZE = _BLOCK_HDR_EXT_STRUCT.size
