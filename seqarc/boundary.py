"""Translation between engine results and values handed to callers.

Everything :class:`~seqarc.archive.GenomeArchive` returns passes through here:
strings and name lists are rebuilt so the caller never holds an object the
engine still references, and engine faults are converted to the query error
kinds in :mod:`seqarc.errors`.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, List

from .errors import DecodeFailure, NotFoundError, NotOpenError, RangeError


logger = logging.getLogger(__name__)

# Errors the handle raises itself; they pass through unchanged.
QUERY_ERRORS = (NotOpenError, NotFoundError, RangeError, DecodeFailure)


@contextmanager
def engine_call(operation: str) -> Iterator[None]:
    """Run engine work for ``operation``; any fault leaves as DecodeFailure."""
    try:
        yield
    except QUERY_ERRORS:
        raise
    except Exception as exc:
        logger.debug("%s failed inside engine: %r", operation, exc)
        raise DecodeFailure(f"{operation}: {exc}") from exc


def owned_str(value) -> str:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("ascii")
    if not isinstance(value, str):
        raise TypeError(f"engine returned {type(value).__name__}, expected str")
    # str(value) would hand back the same object for an exact str
    return value.encode("utf-8").decode("utf-8")


def owned_names(values: Iterable) -> List[str]:
    return [owned_str(v) for v in values]


def owned_count(value) -> int:
    count = int(value)
    if count < 0:
        raise ValueError(f"engine returned negative count {count}")
    return count
