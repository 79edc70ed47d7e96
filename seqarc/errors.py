from typing import Optional


class SeqArcError(Exception):
    """Base class for seqarc-specific errors."""


# Engine-internal format and integrity faults. These never reach callers of
# GenomeArchive directly; the boundary layer converts them.
class ArchiveError(SeqArcError):
    pass


class SuperblockError(ArchiveError):
    pass


class IndexLocatorError(ArchiveError):
    pass


class IndexFrameError(ArchiveError):
    pass


class IndexSizeError(ArchiveError):
    pass


class IndexHashMismatch(ArchiveError):
    pass


class EncryptedArchiveRequiresPassword(ArchiveError):
    pass


class BlockBoundsError(ArchiveError):
    pass


class BlockCorruptError(ArchiveError):
    pass


# Query errors raised by GenomeArchive
class NotOpenError(SeqArcError):
    """A query was issued on a handle that is not open."""

    def __init__(self, operation: str):
        super().__init__(f"{operation}: archive is not open")
        self.operation = operation


class NotFoundError(SeqArcError, KeyError):
    """A sample or contig name does not exist in the open archive."""

    def __init__(self, sample: str, contig: Optional[str] = None):
        if contig is None:
            msg = f"sample {sample!r} not found"
        else:
            msg = f"contig {contig!r} not found in sample {sample!r}"
        super().__init__(msg)
        self.sample = sample
        self.contig = contig

    def __str__(self) -> str:
        # KeyError would repr() the message
        return str(self.args[0])


class RangeError(SeqArcError, ValueError):
    """Extraction coordinates violate ``0 <= start <= end <= length``."""

    def __init__(self, start: int, end: int, length: int):
        if start < 0:
            reason = "start is negative"
        elif start > end:
            reason = "start is greater than end"
        else:
            reason = "end exceeds contig length"
        super().__init__(f"invalid range [{start}, {end}) for contig of length {length}: {reason}")
        self.start = start
        self.end = end
        self.length = length


class DecodeFailure(SeqArcError):
    """The engine could not reconstruct the requested data."""
