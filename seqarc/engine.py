"""Primitive operations a sequence archive engine offers to :class:`GenomeArchive`.

Lifecycle calls report success as booleans, lookups of unknown names return
empty results or ``-1`` instead of raising, and ``get_contig_string`` takes an
*inclusive* end coordinate and raises on any failure. Normalising these
conventions is the handle's job, not the engine's.

Engines hold mutable state (open file, caches) and are not thread-safe.
"""

from __future__ import annotations

import abc
import os
from typing import List, Optional, Union


PathType = Union[str, "os.PathLike[str]"]


class EngineCapability(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    def open(self, path: PathType, prefetch: bool, password: Optional[str] = None) -> bool: ...

    @abc.abstractmethod
    def close(self) -> bool: ...

    @abc.abstractmethod
    def is_opened(self) -> bool: ...

    @abc.abstractmethod
    def list_samples(self) -> List[str]: ...

    @abc.abstractmethod
    def list_contigs(self, sample: str) -> List[str]:
        """Contig names of ``sample``; empty for an unknown sample."""

    @abc.abstractmethod
    def get_no_samples(self) -> int: ...

    @abc.abstractmethod
    def get_no_contigs(self, sample: str) -> int:
        """Number of contigs in ``sample``, or -1 if the sample is unknown."""

    @abc.abstractmethod
    def get_contig_length(self, sample: str, contig: str) -> int:
        """Residue count, or -1 if the sample or contig is unknown."""

    @abc.abstractmethod
    def get_contig_string(self, sample: str, contig: str, start: int, end: int) -> str:
        """Residues ``start..end`` with ``end`` inclusive."""
