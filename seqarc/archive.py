from __future__ import annotations

import logging
import operator
import os
from typing import Callable, List, Optional

from .boundary import engine_call, owned_count, owned_names, owned_str
from .engine import EngineCapability, PathType
from .errors import NotFoundError, NotOpenError, RangeError
from .reader import ArchiveReader


logger = logging.getLogger(__name__)


class GenomeArchive:
    """Handle over one multi-sample sequence archive.

    The handle exclusively owns its engine and exposes only the operations
    below. Lifecycle calls (``open``, ``close``) report failure as ``False``;
    queries raise :class:`~seqarc.errors.NotOpenError`,
    :class:`~seqarc.errors.NotFoundError`, :class:`~seqarc.errors.RangeError`
    or :class:`~seqarc.errors.DecodeFailure`, checked in that order.

    Coordinates are zero-based and half-open. A handle is not safe for
    concurrent use; open one handle per thread instead.

    Usage::

        with GenomeArchive() as arc:
            if arc.open("panel.sqa"):
                seq = arc.get_contig_string("sampleA", "chr1", 1000, 2000)
    """

    def __init__(self, engine_factory: Callable[[], EngineCapability] = ArchiveReader):
        self._engine = engine_factory()
        self._path: Optional[str] = None
        self._prefetch = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __del__(self):
        # Releasing an open handle closes it. Attributes may be missing if
        # __init__ failed.
        engine = getattr(self, "_engine", None)
        if engine is not None and self._path is not None:
            self.close()

    def __repr__(self) -> str:
        return f"GenomeArchive(is_opened={self.is_opened()})"

    @property
    def path(self) -> Optional[str]:
        return self._path

    @property
    def prefetch(self) -> bool:
        return self._prefetch

    # lifecycle

    def open(self, path: PathType, prefetch: bool = False, password: Optional[str] = None) -> bool:
        """Open the archive at ``path``.

        ``prefetch=True`` loads the whole archive into memory up front; the
        default reads blocks on demand. Returns ``False`` if the file is
        missing, unreadable, corrupt, of an unsupported version, or encrypted
        and ``password`` is missing or wrong.

        Opening a handle that is already open is refused: it returns
        ``False`` and leaves the current archive open.
        """
        if self.is_opened():
            logger.warning("open(%s) refused: handle already open on %s", path, self._path)
            return False
        path = os.fspath(path)
        try:
            ok = bool(self._engine.open(path, bool(prefetch), password))
        except Exception as exc:
            logger.warning("Engine raised while opening %s: %r", path, exc)
            ok = False
        if not ok:
            # an engine that failed partway through open may still hold resources
            if self._engine_opened():
                try:
                    self._engine.close()
                except Exception as exc:
                    logger.warning("Engine raised while closing after failed open of %s: %r", path, exc)
            return False
        self._path = path
        self._prefetch = bool(prefetch)
        logger.debug("Opened %s (prefetch=%s)", path, self._prefetch)
        return True

    def close(self) -> bool:
        """Release the archive. Closing a closed handle is a no-op returning ``True``."""
        if self._path is None and not self._engine_opened():
            return True
        try:
            ok = bool(self._engine.close())
        except Exception as exc:
            logger.warning("Engine raised while closing %s: %r", self._path, exc)
            ok = False
        if ok:
            logger.debug("Closed %s", self._path)
            self._path = None
            self._prefetch = False
        return ok

    def is_opened(self) -> bool:
        return self._path is not None and self._engine_opened()

    # enumeration

    def list_samples(self) -> List[str]:
        self._require_open("list_samples")
        with engine_call("list_samples"):
            return owned_names(self._engine.list_samples())

    def list_contigs(self, sample: str) -> List[str]:
        self._require_open("list_contigs")
        self._require_sample(sample)
        with engine_call("list_contigs"):
            return owned_names(self._engine.list_contigs(sample))

    def get_no_samples(self) -> int:
        self._require_open("get_no_samples")
        with engine_call("get_no_samples"):
            return owned_count(self._engine.get_no_samples())

    def get_no_contigs(self, sample: str) -> int:
        self._require_open("get_no_contigs")
        return self._require_sample(sample)

    # extraction

    def get_contig_length(self, sample: str, contig: str) -> int:
        self._require_open("get_contig_length")
        self._require_sample(sample)
        return self._require_contig(sample, contig)

    def get_contig_string(self, sample: str, contig: str, start: int, end: int) -> str:
        """Residues ``[start, end)`` of ``contig`` in ``sample``.

        Either exactly ``end - start`` residues come back or an error is
        raised; coordinates are never clamped.
        """
        self._require_open("get_contig_string")
        self._require_sample(sample)
        length = self._require_contig(sample, contig)
        start = operator.index(start)
        end = operator.index(end)
        if start < 0 or start > end or end > length:
            raise RangeError(start, end, length)
        if start == end:
            return ""
        with engine_call("get_contig_string"):
            # the engine's end coordinate is inclusive
            seq = owned_str(self._engine.get_contig_string(sample, contig, start, end - 1))
            if len(seq) != end - start:
                raise ValueError(f"engine returned {len(seq)} residues for a range of {end - start}")
        return seq

    def get_full_contig(self, sample: str, contig: str) -> str:
        """Whole sequence of ``contig``; empty for a zero-length contig."""
        self._require_open("get_full_contig")
        self._require_sample(sample)
        length = self._require_contig(sample, contig)
        return self.get_contig_string(sample, contig, 0, length)

    # internals

    def _engine_opened(self) -> bool:
        try:
            return bool(self._engine.is_opened())
        except Exception as exc:
            logger.warning("Engine raised from is_opened: %r", exc)
            return False

    def _require_open(self, operation: str) -> None:
        if not self.is_opened():
            raise NotOpenError(operation)

    def _require_sample(self, sample: str) -> int:
        """Return the contig count of ``sample`` or raise NotFoundError."""
        _check_name_type("sample", sample)
        with engine_call("sample lookup"):
            count = int(self._engine.get_no_contigs(sample))
        if count < 0:
            raise NotFoundError(sample)
        return count

    def _require_contig(self, sample: str, contig: str) -> int:
        """Return the length of ``contig`` or raise NotFoundError."""
        _check_name_type("contig", contig)
        with engine_call("contig lookup"):
            length = int(self._engine.get_contig_length(sample, contig))
        if length < 0:
            raise NotFoundError(sample, contig)
        return length


def _check_name_type(kind: str, name) -> None:
    if not isinstance(name, str):
        raise TypeError(f"{kind} name must be str, not {type(name).__name__}")
