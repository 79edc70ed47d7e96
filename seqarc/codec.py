from __future__ import annotations

import zlib
from typing import Optional

import zstandard

from .constants import CODEC_NONE, CODEC_DEFLATE, CODEC_ZSTD


CODEC_NAMES = {
    CODEC_NONE: "none",
    CODEC_DEFLATE: "deflate",
    CODEC_ZSTD: "zstd",
}


def codec_from_name(name: str) -> int:
    for codec_id, codec_name in CODEC_NAMES.items():
        if codec_name == name.lower():
            return codec_id
    raise ValueError(f"unknown codec name: {name}")


class Codec:
    def __init__(self, codec_id: int, level: Optional[int] = None):
        if codec_id not in CODEC_NAMES:
            raise ValueError(f"unsupported codec id: {codec_id}")
        self.codec_id = codec_id
        self.level = level

    def compress(self, data: bytes) -> bytes:
        if self.codec_id == CODEC_NONE:
            return data
        if self.codec_id == CODEC_DEFLATE:
            return zlib.compress(data, self.level if self.level is not None else 6)
        try:
            c = zstandard.ZstdCompressor(level=self.level if self.level is not None else 3)
            return c.compress(data)
        except zstandard.ZstdError as e:
            raise RuntimeError(f"zstd compression failed: {e}") from e

    def decompress(self, data: bytes, expected_len: Optional[int] = None) -> bytes:
        if self.codec_id == CODEC_NONE:
            return data
        if self.codec_id == CODEC_DEFLATE:
            try:
                return zlib.decompress(data)
            except zlib.error as e:
                raise ValueError(f"deflate decompression failed: {e}") from e
        try:
            d = zstandard.ZstdDecompressor()
            # Frames written by ZstdCompressor.compress carry the content size;
            # max_output_size only matters for frames that do not.
            return d.decompress(data, max_output_size=expected_len or 0)
        except zstandard.ZstdError as e:
            raise ValueError(f"zstd decompression failed: {e}") from e
