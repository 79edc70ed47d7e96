import uuid


# Magic and version
SUPERBLOCK_MAGIC = b"SEQARC\x00\x00"   # 8 bytes: "SEQARC\0\0"
INDEX_FRAME_MAGIC = b"SQAIDX\x00\x00"  # 8 bytes: "SQAIDX\0\0"
INDEX_LOC_MAGIC = b"SQALOC\x00\x00"    # 8 bytes: "SQALOC\0\0"

VERSION_MAJOR = 1
VERSION_MINOR = 0

# Superblock flags
FLAG_ENCRYPTED = 1 << 0
FLAG_BLOCK_COMPRESS_DEFAULT = 1 << 1

# Index frame flags
FRAME_FLAG_COMPRESSED = 1 << 0
FRAME_FLAG_ENCRYPTED = 1 << 1


# Record constants
REC_SYNC = bytes([0xD2, 0x53, 0x51, 0x41])  # 0xD2 'S' 'Q' 'A'

RTYPE_BLOCK = 1

# Record flags
RFLAG_HEADER_EXT = 1 << 0
RFLAG_BLOCK_TAG_PRESENT = 1 << 1


# Codec IDs (0=none, 1=deflate/zlib, 2=zstd)
CODEC_NONE = 0
CODEC_DEFLATE = 1
CODEC_ZSTD = 2

# KDF IDs
KDF_NONE = 0
KDF_ARGON2ID = 1


DEFAULT_BLOCK_SIZE = 65_536  # residues per block
DEFAULT_CODEC_ID = CODEC_ZSTD
DEFAULT_BLOCK_CACHE_SIZE = 16  # decoded blocks kept per open engine

# Safety bounds applied while loading an index
MAX_INDEX_UNCOMPRESSED = 128 * 1024 * 1024
INDEX_LIMITS = {
    "max_samples": 1_000_000,
    "max_contigs": 10_000_000,
    "max_total_blocks": 50_000_000,
}
MAX_NAME_BYTES = 1024

# Sequence alphabet is stored as bytes; anything outside ASCII is rejected
SEQUENCE_ENCODING = "ascii"


def new_uuid_bytes() -> bytes:
    return uuid.uuid4().bytes
