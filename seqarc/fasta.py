"""FASTA input for building archives."""

from __future__ import annotations

import gzip
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union


def _open_text(path: Path):
    with path.open("rb") as fh:
        magic = fh.read(2)
    if magic == b"\x1f\x8b":
        return gzip.open(path, "rt", encoding="ascii")
    return path.open("r", encoding="ascii")


def read_fasta_records(path: Union[str, Path]) -> Iterator[Tuple[str, str]]:
    """Yield (name, sequence) tuples; the name is the first word of the header.

    Plain and gzip-compressed files are accepted.
    """
    path = Path(path)
    name: Optional[str] = None
    seq_chunks: List[str] = []
    with _open_text(path) as handle:
        for lineno, line in enumerate(handle, 1):
            line = line.strip()
            if not line:
                continue
            if line.startswith(">"):
                if name is not None:
                    yield name, "".join(seq_chunks)
                header = line[1:].split()
                if not header:
                    raise ValueError(f"{path}:{lineno}: empty FASTA header")
                name = header[0]
                seq_chunks = []
            else:
                if name is None:
                    raise ValueError(f"{path}:{lineno}: sequence data before first header")
                seq_chunks.append(line)
    if name is not None:
        yield name, "".join(seq_chunks)
