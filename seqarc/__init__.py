"""
seqarc: random-access reader for compressed multi-sample genome archives.

Features:

- Handle API (GenomeArchive): open/close, sample and contig enumeration,
  contig lengths and half-open range extraction without decompressing the
  whole archive.
- Typed query errors (NotOpenError, NotFoundError, RangeError, DecodeFailure);
  lifecycle calls report failure as booleans.
- Bundled engine for the block-compressed .sqa container: zstd or deflate
  blocks, per-block BLAKE2s tags, dual index trailers, optional
  XChaCha20-Poly1305 encryption with Argon2id key derivation.
- ArchiveWriter for building new archives from sequences or FASTA files.
"""

__version__ = "0.1"

from .archive import GenomeArchive  # noqa: E402
from .engine import EngineCapability  # noqa: E402
from .errors import (  # noqa: E402
    SeqArcError,
    NotOpenError,
    NotFoundError,
    RangeError,
    DecodeFailure,
)
from .writer import ArchiveWriter  # noqa: E402

__all__ = [
    "GenomeArchive",
    "EngineCapability",
    "ArchiveWriter",
    "SeqArcError",
    "NotOpenError",
    "NotFoundError",
    "RangeError",
    "DecodeFailure",
]
