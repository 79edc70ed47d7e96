from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Union

from . import tlv
from .codec import Codec, codec_from_name
from .constants import (
    VERSION_MAJOR,
    VERSION_MINOR,
    FLAG_ENCRYPTED,
    FLAG_BLOCK_COMPRESS_DEFAULT,
    DEFAULT_BLOCK_SIZE,
    DEFAULT_CODEC_ID,
    CODEC_NONE,
    RTYPE_BLOCK,
    RFLAG_BLOCK_TAG_PRESENT,
    MAX_NAME_BYTES,
    SEQUENCE_ENCODING,
    new_uuid_bytes,
)
from .encryption import EncryptionContext
from .fasta import read_fasta_records
from .hashutil import block_tag
from .records import BlockHeader, write_record
from .superblock import pack_superblock
from .trailer import write_index_trailer
from . import __version__


logger = logging.getLogger(__name__)


@dataclass
class BlockDesc:
    offset: int
    payload_len: int
    residues: int
    tag16: bytes


@dataclass
class ContigEntry:
    name: str
    length: int = 0
    blocks: List[BlockDesc] = field(default_factory=list)


@dataclass
class SampleEntry:
    name: str
    contigs: List[ContigEntry] = field(default_factory=list)
    contig_names: Dict[str, int] = field(default_factory=dict)


def _check_name(kind: str, name: str) -> None:
    if not isinstance(name, str) or not name:
        raise ValueError(f"{kind} name must be a non-empty string")
    if "\x00" in name:
        raise ValueError(f"{kind} name contains NUL")
    if len(name.encode("utf-8")) > MAX_NAME_BYTES:
        raise ValueError(f"{kind} name exceeds {MAX_NAME_BYTES} bytes")


class ArchiveWriter:
    """Streaming writer for new multi-sample sequence archives.

    Blocks are written as contigs are added; the index trailer is written by
    ``finalize()``. An archive closed without ``finalize()`` has no index and
    will not open.
    """

    def __init__(
        self,
        out_path: Union[str, Path],
        block_size: int = DEFAULT_BLOCK_SIZE,
        codec: Union[int, str] = DEFAULT_CODEC_ID,
        level: Optional[int] = None,
        password: Optional[str] = None,
        kdf: Optional[Dict[str, int]] = None,
    ):
        if block_size <= 0:
            raise ValueError("block_size must be positive")
        self.out_path = str(out_path)
        self.f: Optional[BinaryIO] = None
        self.block_size = block_size
        if isinstance(codec, str):
            codec = codec_from_name(codec)
        self.codec = Codec(codec, level)
        self.flags = 0
        if codec != CODEC_NONE:
            self.flags |= FLAG_BLOCK_COMPRESS_DEFAULT
        self.encryptor: Optional[EncryptionContext] = None
        if password:
            self.encryptor = EncryptionContext.create(password, **(kdf or {}))
            self.flags |= FLAG_ENCRYPTED
        self.archive_uuid = new_uuid_bytes()
        self.samples: List[SampleEntry] = []
        self._sample_names: Dict[str, int] = {}
        self.finalized = False

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.f is not None:
            return
        # Archives are immutable once written; never overwrite an existing file
        self.f = open(self.out_path, "xb")
        self.f.write(
            pack_superblock(
                flags=self.flags,
                archive_uuid=self.archive_uuid,
                block_size=self.block_size,
                default_codec=self.codec.codec_id,
                enc_params=self.encryptor.params if self.encryptor else None,
            )
        )

    def close(self):
        if self.f is not None:
            self.f.close()
            self.f = None

    def add_sample(self, name: str) -> None:
        if self.finalized:
            raise RuntimeError("Archive already finalized")
        _check_name("sample", name)
        if name in self._sample_names:
            raise ValueError(f"duplicate sample name: {name}")
        self._sample_names[name] = len(self.samples)
        self.samples.append(SampleEntry(name=name))

    def add_contig(self, sample: str, name: str, sequence: Union[str, bytes]) -> None:
        """Append a contig to ``sample``, creating the sample on first use."""
        if self.f is None:
            raise RuntimeError("Writer not open")
        if self.finalized:
            raise RuntimeError("Archive already finalized")
        _check_name("contig", name)
        if sample not in self._sample_names:
            self.add_sample(sample)
        sample_index = self._sample_names[sample]
        entry = self.samples[sample_index]
        if name in entry.contig_names:
            raise ValueError(f"duplicate contig name {name!r} in sample {sample!r}")
        if isinstance(sequence, str):
            try:
                data = sequence.encode(SEQUENCE_ENCODING)
            except UnicodeEncodeError:
                raise ValueError(f"contig {name!r} contains non-ASCII residues") from None
        else:
            data = bytes(sequence)
            if not data.isascii():
                raise ValueError(f"contig {name!r} contains non-ASCII residues")

        contig = ContigEntry(name=name, length=len(data))
        contig_index = len(entry.contigs)
        for block_index, pos in enumerate(range(0, len(data), self.block_size)):
            raw = data[pos : pos + self.block_size]
            contig.blocks.append(self._write_block(sample_index, contig_index, block_index, raw))
        entry.contig_names[name] = contig_index
        entry.contigs.append(contig)

    def add_fasta(self, sample: str, fasta_path: Union[str, Path]) -> int:
        """Add every record of a FASTA file as contigs of ``sample``; returns the count.

        The file is read twice: a first pass checks every record (parse
        errors, names, residues) so a bad file adds nothing to the archive.
        """
        if self.f is None:
            raise RuntimeError("Writer not open")
        if self.finalized:
            raise RuntimeError("Archive already finalized")
        _check_name("sample", sample)
        existing = self.samples[self._sample_names[sample]].contig_names if sample in self._sample_names else {}
        seen = set()
        for name, seq in read_fasta_records(fasta_path):
            _check_name("contig", name)
            if name in existing or name in seen:
                raise ValueError(f"duplicate contig name {name!r} in sample {sample!r}")
            if not seq.isascii():
                raise ValueError(f"contig {name!r} contains non-ASCII residues")
            seen.add(name)
        if sample not in self._sample_names:
            self.add_sample(sample)
        count = 0
        for name, seq in read_fasta_records(fasta_path):
            self.add_contig(sample, name, seq)
            count += 1
        logger.debug("Added %d contigs from %s to sample %s", count, fasta_path, sample)
        return count

    def finalize(self):
        if self.f is None:
            raise RuntimeError("Writer not open")
        if self.finalized:
            return
        write_index_trailer(self.f, self.encryptor, self.archive_uuid, self._build_index_payload())
        self.finalized = True
        logger.debug(
            "Finalized %s: %d samples, %d contigs",
            self.out_path,
            len(self.samples),
            sum(len(s.contigs) for s in self.samples),
        )

    # internals
    def _write_block(self, sample_index: int, contig_index: int, block_index: int, raw: bytes) -> BlockDesc:
        assert self.f is not None
        tag16 = block_tag(raw)
        header = BlockHeader(
            sample_index=sample_index,
            contig_index=contig_index,
            block_index=block_index,
            residues=len(raw),
            codec_id=self.codec.codec_id,
            flags=0,
            tag16=tag16,
        )
        off, stored_len = write_record(
            self.f,
            RTYPE_BLOCK,
            RFLAG_BLOCK_TAG_PRESENT,
            header.pack(),
            self.codec.compress(raw),
            encryptor=self.encryptor,
        )
        return BlockDesc(offset=off, payload_len=stored_len, residues=len(raw), tag16=tag16)

    def _build_index_payload(self) -> bytes:
        idx = {
            "version": {"major": VERSION_MAJOR, "minor": VERSION_MINOR},
            "archive_uuid": self.archive_uuid,
            "writer_info": f"seqarc/{__version__}",
            "block_size": self.block_size,
            "default_codec": self.codec.codec_id,
            "samples": [
                {
                    "name": s.name,
                    "contigs": [
                        {
                            "name": c.name,
                            "length": c.length,
                            "blocks": [
                                {
                                    "offset": b.offset,
                                    "payload_len": b.payload_len,
                                    "residues": b.residues,
                                    "blake2s_16": b.tag16,
                                }
                                for b in c.blocks
                            ],
                        }
                        for c in s.contigs
                    ],
                }
                for s in self.samples
            ],
        }
        return tlv.dumps_index(idx)
