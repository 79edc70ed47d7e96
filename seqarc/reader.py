from __future__ import annotations

import io
import logging
import os
import struct
import zlib
from bisect import bisect_right
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, List, Optional, Tuple

from . import tlv
from .codec import Codec
from .constants import (
    INDEX_FRAME_MAGIC,
    INDEX_LOC_MAGIC,
    RTYPE_BLOCK,
    FLAG_ENCRYPTED,
    FRAME_FLAG_COMPRESSED,
    FRAME_FLAG_ENCRYPTED,
    KDF_ARGON2ID,
    DEFAULT_BLOCK_CACHE_SIZE,
    MAX_INDEX_UNCOMPRESSED,
    INDEX_LIMITS,
    MAX_NAME_BYTES,
    SEQUENCE_ENCODING,
)
from .encryption import EncryptionContext
from .engine import EngineCapability, PathType
from .errors import (
    ArchiveError,
    IndexLocatorError,
    IndexFrameError,
    IndexSizeError,
    IndexHashMismatch,
    EncryptedArchiveRequiresPassword,
    BlockBoundsError,
    BlockCorruptError,
)
from .hashutil import blake2s_32, block_tag
from .records import BlockHeader, read_record_at
from .superblock import Superblock, read_superblock, SUPERBLOCK_SIZE
from .trailer import IDX_FRAME_HDR, IDX_LOC_STRUCT, IDX_FRAME_AAD, locator_crc


logger = logging.getLogger(__name__)

_TAIL_SCAN_BYTES = 128 * 1024


@dataclass
class BlockDesc:
    offset: int
    payload_len: int
    residues: int
    tag16: bytes


@dataclass
class ContigIndex:
    name: str
    index: int
    length: int
    blocks: List[BlockDesc] = field(default_factory=list)
    # residue position at which each block starts
    starts: List[int] = field(default_factory=list)


@dataclass
class SampleIndex:
    name: str
    index: int
    contigs: Dict[str, ContigIndex] = field(default_factory=dict)


class ArchiveReader(EngineCapability):
    """Random-access engine over a block-compressed sequence archive.

    Only the index is decoded at open time. Blocks are read, decrypted,
    decompressed and tag-checked when a range touching them is requested;
    the most recently used ones are kept in a small cache.

    With ``prefetch`` the whole file is read into memory during ``open`` and
    the file descriptor is released immediately.
    """

    def __init__(self, block_cache_size: int = DEFAULT_BLOCK_CACHE_SIZE, limits: Optional[Dict[str, int]] = None):
        self.block_cache_size = max(0, block_cache_size)
        self.limits = dict(INDEX_LIMITS, **(limits or {}))
        self.path: Optional[str] = None
        self.prefetch = False
        self.f: Optional[BinaryIO] = None
        self.superblock: Optional[Superblock] = None
        self.decryptor: Optional[EncryptionContext] = None
        self.samples: Dict[str, SampleIndex] = {}
        self.writer_info: Optional[str] = None
        self._size = 0
        self._cache: "OrderedDict[Tuple[int, int, int], bytes]" = OrderedDict()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self, path: PathType, prefetch: bool, password: Optional[str] = None) -> bool:
        if self.f is not None:
            logger.warning("Engine already has %s open", self.path)
            return False
        path = os.fspath(path)
        try:
            self.f = open(path, "rb")
            if prefetch:
                data = self.f.read()
                self.f.close()
                self.f = io.BytesIO(data)
            self._size = self.f.seek(0, io.SEEK_END)
            self.superblock = read_superblock(self.f)
            self.decryptor = self._make_decryptor(self.superblock, password)
            self._load_index()
        except (ArchiveError, OSError, ValueError, EOFError, RuntimeError) as exc:
            logger.warning("Cannot open archive %s: %s", path, exc)
            self._reset()
            return False
        except Exception:
            # unexpected fault: release the file before it propagates
            self._reset()
            raise
        self.path = path
        self.prefetch = bool(prefetch)
        logger.debug(
            "Opened %s (prefetch=%s): %d samples",
            path,
            self.prefetch,
            len(self.samples),
        )
        return True

    def close(self) -> bool:
        if self.f is None:
            return True
        self._reset()
        return True

    def is_opened(self) -> bool:
        return self.f is not None

    def list_samples(self) -> List[str]:
        return list(self.samples)

    def list_contigs(self, sample: str) -> List[str]:
        s = self.samples.get(sample)
        if s is None:
            return []
        return list(s.contigs)

    def get_no_samples(self) -> int:
        return len(self.samples)

    def get_no_contigs(self, sample: str) -> int:
        s = self.samples.get(sample)
        if s is None:
            return -1
        return len(s.contigs)

    def get_contig_length(self, sample: str, contig: str) -> int:
        c = self._find_contig(sample, contig)
        if c is None:
            return -1
        return c.length

    def get_contig_string(self, sample: str, contig: str, start: int, end: int) -> str:
        if self.f is None:
            raise RuntimeError("Archive not open")
        c = self._find_contig(sample, contig)
        if c is None:
            raise KeyError(f"{contig}@{sample}")
        if start < 0 or end < start or end >= c.length:
            raise ValueError(f"Range {start}..{end} outside contig {contig}@{sample} of length {c.length}")
        sample_index = self.samples[sample].index
        first = bisect_right(c.starts, start) - 1
        last = bisect_right(c.starts, end) - 1
        parts = []
        for bi in range(first, last + 1):
            raw = self._block(sample_index, c, bi)
            lo = max(start - c.starts[bi], 0)
            hi = min(end + 1 - c.starts[bi], len(raw))
            parts.append(raw[lo:hi])
        return b"".join(parts).decode(SEQUENCE_ENCODING)

    # internals
    def _reset(self):
        if self.f is not None:
            self.f.close()
        self.f = None
        self.path = None
        self.prefetch = False
        self.superblock = None
        self.decryptor = None
        self.samples = {}
        self.writer_info = None
        self._size = 0
        self._cache.clear()

    @staticmethod
    def _make_decryptor(sb: Superblock, password: Optional[str]) -> Optional[EncryptionContext]:
        if not sb.flags & FLAG_ENCRYPTED:
            return None
        if not password:
            raise EncryptedArchiveRequiresPassword("Archive is encrypted; password required")
        params = sb.encryption_params()
        if sb.kdf_id != KDF_ARGON2ID or params is None:
            raise ValueError("Unsupported KDF for encrypted archive")
        return EncryptionContext.from_params(password, params)

    def _find_contig(self, sample: str, contig: str) -> Optional[ContigIndex]:
        s = self.samples.get(sample)
        if s is None:
            return None
        return s.contigs.get(contig)

    def _block(self, sample_index: int, contig: ContigIndex, block_index: int) -> bytes:
        key = (sample_index, contig.index, block_index)
        raw = self._cache.get(key)
        if raw is not None:
            self._cache.move_to_end(key)
            return raw
        raw = self._read_block(sample_index, contig, block_index)
        if self.block_cache_size:
            self._cache[key] = raw
            while len(self._cache) > self.block_cache_size:
                self._cache.popitem(last=False)
        return raw

    def _read_block(self, sample_index: int, contig: ContigIndex, block_index: int) -> bytes:
        assert self.f is not None
        desc = contig.blocks[block_index]
        where = f"block {block_index} of contig {contig.name}"
        try:
            rtype, _rflags, hdr_ext, payload = read_record_at(self.f, desc.offset, decryptor=self.decryptor)
            if rtype != RTYPE_BLOCK:
                raise BlockCorruptError(f"{where}: expected block record")
            hdr = BlockHeader.unpack(hdr_ext)
            if (hdr.sample_index, hdr.contig_index, hdr.block_index) != (sample_index, contig.index, block_index):
                raise BlockCorruptError(f"{where}: record belongs to another block")
            if hdr.residues != desc.residues or hdr.tag16 != desc.tag16:
                raise BlockCorruptError(f"{where}: record header disagrees with index")
            raw = Codec(hdr.codec_id).decompress(payload, expected_len=desc.residues)
        except (ValueError, EOFError) as exc:
            raise BlockCorruptError(f"{where}: {exc}") from exc
        if len(raw) != desc.residues:
            raise BlockCorruptError(f"{where}: length mismatch after decompress")
        if block_tag(raw) != desc.tag16:
            raise BlockCorruptError(f"{where}: tag mismatch; data corrupted")
        return raw

    def _find_locator(self) -> Tuple[int, int]:
        """Scan the file tail backwards for the newest valid index locator.

        Returns (frame_offset, frame_len).
        """
        assert self.f is not None and self.superblock is not None
        tail_size = min(_TAIL_SCAN_BYTES, self._size)
        self.f.seek(self._size - tail_size)
        tail = self.f.read(tail_size)
        scan_pos = len(tail)
        while True:
            scan_pos = tail.rfind(INDEX_LOC_MAGIC, 0, scan_pos)
            if scan_pos == -1:
                raise IndexLocatorError("Index locator not found or CRC mismatch")
            loc_raw = tail[scan_pos : scan_pos + IDX_LOC_STRUCT.size]
            if len(loc_raw) == IDX_LOC_STRUCT.size:
                _magic, flen, foff, seq, loc_uuid, loc_crc = IDX_LOC_STRUCT.unpack(loc_raw)
                if (
                    locator_crc(flen, foff, seq, loc_uuid) == loc_crc
                    and loc_uuid == self.superblock.uuid
                    and SUPERBLOCK_SIZE <= foff
                    and foff + flen <= self._size
                ):
                    return foff, flen
            scan_pos -= 1
            if scan_pos < 0:
                raise IndexLocatorError("Index locator not found or CRC mismatch")

    def _load_index(self):
        """Locate, authenticate and decode the index, then build lookup tables.

        Every block reference is bounds-checked against the file and every
        contig's blocks must add up to its declared length, so that later
        range queries can trust the tables without re-checking them.
        """
        assert self.f is not None
        frame_off, frame_len = self._find_locator()
        self.f.seek(frame_off)
        frame = self.f.read(frame_len)
        if self.decryptor is not None:
            frame = self.decryptor.decrypt(IDX_FRAME_AAD, frame)
        if len(frame) < IDX_FRAME_HDR.size + 4:
            raise IndexFrameError("Index frame too short")
        frame_crc = struct.unpack("<I", frame[-4:])[0]
        if zlib.crc32(frame[:-4]) != frame_crc:
            raise IndexFrameError("Index frame CRC mismatch")
        magic, frame_flags, uncompressed_len, index_hash = IDX_FRAME_HDR.unpack(frame[: IDX_FRAME_HDR.size])
        if magic != INDEX_FRAME_MAGIC:
            raise IndexFrameError("Bad index frame magic")
        if self.decryptor is None and frame_flags & FRAME_FLAG_ENCRYPTED:
            raise EncryptedArchiveRequiresPassword("Encrypted index frame requires password")
        if uncompressed_len > MAX_INDEX_UNCOMPRESSED:
            raise IndexSizeError("Index size exceeds safety bound")
        payload = frame[IDX_FRAME_HDR.size : -4]
        if frame_flags & FRAME_FLAG_COMPRESSED:
            d = zlib.decompressobj()
            try:
                payload = d.decompress(payload, uncompressed_len)
            except zlib.error as exc:
                raise IndexFrameError(f"Index frame does not decompress: {exc}") from exc
            if d.unconsumed_tail:
                raise IndexSizeError("Index larger than declared length")
        if len(payload) != uncompressed_len:
            raise IndexFrameError("Index uncompressed length mismatch")
        if blake2s_32(payload) != index_hash:
            raise IndexHashMismatch("Index hash mismatch")
        idx = tlv.loads_index(payload, limits=self.limits)
        self.writer_info = idx.get("writer_info")
        if idx.get("archive_uuid", self.superblock.uuid) != self.superblock.uuid:
            raise IndexFrameError("Index belongs to another archive")
        self.samples = self._build_tables(idx, idx.get("block_size", self.superblock.block_size))

    def _build_tables(self, idx: Dict, block_size: int) -> Dict[str, SampleIndex]:
        samples: Dict[str, SampleIndex] = {}
        for si, s in enumerate(idx.get("samples", [])):
            name = s["name"]
            _check_index_name(name)
            if name in samples:
                raise ValueError(f"Duplicate sample in index: {name}")
            sample = SampleIndex(name=name, index=si)
            for ci, c in enumerate(s.get("contigs", [])):
                cname = c["name"]
                _check_index_name(cname)
                if cname in sample.contigs:
                    raise ValueError(f"Duplicate contig in index: {cname}@{name}")
                contig = ContigIndex(name=cname, index=ci, length=c["length"])
                pos = 0
                for b in c["blocks"]:
                    if b["residues"] == 0 or b["residues"] > block_size:
                        raise BlockBoundsError("Block residue count out of range")
                    if b["offset"] < SUPERBLOCK_SIZE or b["offset"] + b["payload_len"] > self._size:
                        raise BlockBoundsError("Block offset out of range")
                    contig.starts.append(pos)
                    contig.blocks.append(
                        BlockDesc(
                            offset=b["offset"],
                            payload_len=b["payload_len"],
                            residues=b["residues"],
                            tag16=b["blake2s_16"],
                        )
                    )
                    pos += b["residues"]
                if pos != contig.length:
                    raise BlockBoundsError(f"Blocks of {cname}@{name} do not cover its length")
                sample.contigs[cname] = contig
            samples[name] = sample
        return samples


def _check_index_name(name: str) -> None:
    if not name or "\x00" in name:
        raise ValueError("Invalid name in index")
    if len(name.encode("utf-8")) > MAX_NAME_BYTES:
        raise ValueError("Name length exceeds limit")
